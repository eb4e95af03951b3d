# Import all the models, so that Base has them before being
# imported by Alembic or by create_all in tests
from app.db.base_class import Base  # noqa

from app.models.user import User  # noqa
from app.models.chatbot import Conversation, Message  # noqa
