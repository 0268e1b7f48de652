# pipeline.py

from typing import Any, List, Optional, TypedDict

from langgraph.graph import END, StateGraph

from .. import models
from .tools import ClassifyTool, PersistTool, RoastTool


# 1. Pipeline State
class IngestionState(TypedDict):
    user_id: str
    tone: Optional[str]
    source: str
    transactions: List[Any]
    roasts: Optional[List[str]]
    created: Optional[List[Any]]
    db: Optional[Any]


# 2. Build graph: classify -> roast -> persist
def build_ingestion_graph():
    builder = StateGraph(IngestionState)

    builder.add_node("classify", ClassifyTool())
    builder.add_node("roast", RoastTool())
    builder.add_node("persist", PersistTool())

    builder.set_entry_point("classify")
    builder.add_edge("classify", "roast")
    builder.add_edge("roast", "persist")
    builder.add_edge("persist", END)

    return builder.compile()


ingestion_graph = build_ingestion_graph()


# 3. Entry point
def run_ingestion(db, user_id: str, transactions, tone: Optional[str] = None,
                  source: str = models.SOURCE_BANK_STATEMENT) -> List[models.Expense]:
    """Categorize, roast and store normalized transactions for one user."""
    state = {
        "user_id": user_id,
        "tone": tone,
        "source": source,
        "transactions": list(transactions),
        "roasts": None,
        "created": None,
        "db": db,
    }
    result = ingestion_graph.invoke(state)
    return result.get("created") or []
