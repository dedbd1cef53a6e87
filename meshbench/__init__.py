"""
meshbench: RDMA perftest orchestration across hosts and adapters

Provides:
- Topology generation with port budgeting
- Two-phase server/client execution with a readiness wait
- Report collection and correlation
- Bidirectional connectivity checks
"""

from .config import Config, load_config
from .topology import ConnectionPair, Endpoint, Pattern, PairingRule, TopologyRoles, TopologySpec
from .generator import ScriptGenerator, GenerationResult
from .orchestrator import Orchestrator, ExecutionState
from .collector import Collector
from .correlator import correlate_latency, correlate_bandwidth, correlate_p2p
from .connectivity import ConnectivityAnalyzer, canonical_key

__all__ = [
    'Config',
    'load_config',
    'ConnectionPair',
    'Endpoint',
    'Pattern',
    'PairingRule',
    'TopologyRoles',
    'TopologySpec',
    'ScriptGenerator',
    'GenerationResult',
    'Orchestrator',
    'ExecutionState',
    'Collector',
    'correlate_latency',
    'correlate_bandwidth',
    'correlate_p2p',
    'ConnectivityAnalyzer',
    'canonical_key',
]

__version__ = '0.1.0'
