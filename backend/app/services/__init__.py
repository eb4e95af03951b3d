# Services Package
# Agent loop, model gateway, conversation persistence and team heuristics
