from .user import User
from .asset import Asset
from .dividend import Dividend
from .stock import Stock
from .cache_entry import CacheEntry
