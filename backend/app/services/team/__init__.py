# Team Services Package
# Assignee suggestion heuristics for issue and task creation
