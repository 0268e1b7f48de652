"""
Statement ingestion pipeline.
A LangGraph graph that categorizes, roasts and stores normalized transactions.
"""

from .pipeline import build_ingestion_graph, ingestion_graph, run_ingestion
from .tools import ClassifyTool, PersistTool, RoastTool

__all__ = [
    "build_ingestion_graph",
    "ingestion_graph",
    "run_ingestion",
    "ClassifyTool",
    "RoastTool",
    "PersistTool",
]
