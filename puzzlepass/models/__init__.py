# Models package: import all models here so Alembic can discover them.

from puzzlepass.models.episode import Episode, Scene, Solution  # noqa: F401
from puzzlepass.models.progress import Progress  # noqa: F401
from puzzlepass.models.entitlement import Entitlement, UnlockedEpisode  # noqa: F401
from puzzlepass.models.checkout import CheckoutSession, RateLimit  # noqa: F401
from puzzlepass.models.purchase import EpisodePurchase, StripePurchase  # noqa: F401
from puzzlepass.models.stripe_event import StripeEvent  # noqa: F401
