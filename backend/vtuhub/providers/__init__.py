from .result import Outcome, ProviderResult  # noqa: F401
from .registry import ProviderRoute, ProviderRegistry, get_registry, load_registry  # noqa: F401
from .gateway import submit, lookup_customer  # noqa: F401
