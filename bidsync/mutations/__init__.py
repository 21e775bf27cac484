from .auctions import CreateAuction, DeleteAuction, EditAuction
from .bids import PlaceBid
from .notifications import ClearNotifications
from .pipeline import Mutation, MutationPipeline, MutationState, PendingMutation

__all__ = [
    "ClearNotifications",
    "CreateAuction",
    "DeleteAuction",
    "EditAuction",
    "Mutation",
    "MutationPipeline",
    "MutationState",
    "PendingMutation",
    "PlaceBid",
]
