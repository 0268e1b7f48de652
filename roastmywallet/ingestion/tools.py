# tools.py

import logging
from typing import Any, Dict, Optional

from langchain_core.runnables import Runnable, RunnableConfig

from .. import crud, models
from ..services import normalizer, roast_service

logger = logging.getLogger("roastmywallet.ingestion.tools")


# 1. Category Classification Tool
class ClassifyTool(Runnable):
    def invoke(self, state: Dict[str, Any], config: Optional[RunnableConfig] = None, **kwargs) -> Dict[str, Any]:
        transactions = state.get("transactions") or []
        for txn in transactions:
            if txn.category:
                txn.category = normalizer.coerce_category(txn.category)
            else:
                txn.category = normalizer.classify_category(txn.description, txn.amount_cents)
        logger.debug(f"ClassifyTool categorized {len(transactions)} transactions")
        return {**state, "transactions": transactions}


# 2. Roast Tool
class RoastTool(Runnable):
    def invoke(self, state: Dict[str, Any], config: Optional[RunnableConfig] = None, **kwargs) -> Dict[str, Any]:
        tone = state.get("tone")
        roasts = [
            roast_service.generate_roast(txn.description, txn.amount_cents, txn.category, tone)
            for txn in state.get("transactions") or []
        ]
        return {**state, "roasts": roasts}


# 3. Persist Tool
class PersistTool(Runnable):
    """Writes each row on its own; rows written before a failure stay written."""

    def invoke(self, state: Dict[str, Any], config: Optional[RunnableConfig] = None, **kwargs) -> Dict[str, Any]:
        db = state["db"]
        created = []
        for txn, roast in zip(state.get("transactions") or [], state.get("roasts") or []):
            created.append(crud.create_expense(
                db,
                user_id=state["user_id"],
                amount=txn.amount_cents,
                description=txn.description,
                date=txn.date,
                category=txn.category,
                roast=roast,
                source=state.get("source") or models.SOURCE_BANK_STATEMENT,
            ))
        logger.info(f"PersistTool created {len(created)} expenses for user {state['user_id']}")
        return {**state, "created": created}
