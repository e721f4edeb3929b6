from trendlog.models.partition import Partition  # noqa: F401
from trendlog.models.trendlog import TrendlogPoint  # noqa: F401
from trendlog.models.sync_metadata import SyncMetadata  # noqa: F401
from trendlog.models.collection_status import CollectionStatus  # noqa: F401
