"""File selection and qualification shared by single-order and batch flows."""
import logging
from typing import Optional

from ..exceptions import InvalidOrderError
from ..models import FILE_SELECTION_LEGACY, FilterOutcome
from ..protocols import IExpressClient
from ..services.order_handler import OrderHandler

logger = logging.getLogger(__name__)


async def select_files(
    client: IExpressClient,
    handler: OrderHandler,
    strategy: str,
) -> Optional[FilterOutcome]:
    """
    Relevant files of an order, by exactly one strategy.

    Returns None (also for an empty kind) when the order is not recognized.
    """
    if strategy == FILE_SELECTION_LEGACY:
        outcome = handler.legacy_filter_outcome()
    else:
        outcome = await client.filter(handler.iter_relative_paths())

    if outcome is None or not outcome.kind:
        return None
    logger.debug(f"[{handler.order_id}] {outcome.kind}: {len(outcome.all_paths)} relevant file(s)")
    return outcome


async def qualify_order(
    client: IExpressClient,
    handler: OrderHandler,
    outcome: FilterOutcome,
) -> str:
    """Empty string if the order qualifies, otherwise the server's reason."""
    order_file = handler.open_file(outcome.order_path)
    if order_file is None:
        raise InvalidOrderError(f"Order file not found: {outcome.order_path}")

    design_file = handler.open_file(outcome.design_path)
    try:
        with order_file:
            return await client.qualify(outcome, order_file, design_file)
    finally:
        if design_file is not None:
            design_file.close()
