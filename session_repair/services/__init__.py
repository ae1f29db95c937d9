"""Service layer for scan, repair and restore operations."""

from session_repair.services.discovery import SessionDiscoveryService
from session_repair.services.executor import ApplyStats, PlanExecutor
from session_repair.services.graph import SessionGraph, load_session_graph
from session_repair.services.planner import RepairPlanner
from session_repair.services.repair import SessionRepairService
from session_repair.services.scanner import IntegrityScanner
from session_repair.services.transaction import TransactionManager
from session_repair.services.verifier import ValidationVerifier

__all__ = [
    'ApplyStats',
    'IntegrityScanner',
    'PlanExecutor',
    'RepairPlanner',
    'SessionDiscoveryService',
    'SessionGraph',
    'SessionRepairService',
    'TransactionManager',
    'ValidationVerifier',
    'load_session_graph',
]
