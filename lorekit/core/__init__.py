from lorekit.core.store import SQLiteItemStore
from lorekit.core.retrieval import TieredRetriever
from lorekit.core.similarity import (
    cosine_similarity,
    find_top_k,
    DimensionMismatchError,
    EmptyVectorError,
)
from lorekit.core.usage import calculate_usage_score
from lorekit.core.capping import (
    deduplicate_results,
    enforce_token_budget,
)
from lorekit.core.diversity import (
    apply_diversification,
    calculate_diversity_metrics,
)
from lorekit.core.tokens import (
    estimate_tokens,
    count_item_tokens,
    count_total_tokens,
)
