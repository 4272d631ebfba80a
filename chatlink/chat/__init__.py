from .activity import Activity, Reply, SignInCard, TurnContext
from .bot import LinkBot

__all__ = ["Activity", "Reply", "SignInCard", "TurnContext", "LinkBot"]
