from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.application.services.bookshelf_resolver import BookshelfResolver
from bookworm.application.services.catalog_sync_service import CatalogSyncService
from bookworm.application.services.list_crawler import ListCrawler
from bookworm.application.services.recommendation_aggregator import RecommendationAggregator
from bookworm.application.services.suggested_ranking_service import SuggestedRankingService
from bookworm.application.services.want_sync_service import WantSyncService

__all__ = [
    "ActivityLogService",
    "BookshelfResolver",
    "CatalogSyncService",
    "ListCrawler",
    "RecommendationAggregator",
    "SuggestedRankingService",
    "WantSyncService",
]
