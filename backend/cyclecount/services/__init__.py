# Services module

from cyclecount.services.adjustment_publisher import (
    AdjustmentPublisher,
    PublicationResult,
)
from cyclecount.services.cycle_count_report_service import CycleCountReportService
from cyclecount.services.cycle_count_service import CycleCountService
from cyclecount.services.item_selector import CountScope, ItemSelector
from cyclecount.services.stock_ledger import Balance, SqlStockLedger, StockLedger
from cyclecount.services.variance_service import (
    ThresholdConfig,
    calculate_variance,
    exceeds_threshold,
    summarize_items,
)
