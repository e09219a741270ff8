from .adapter import CONNECTOR_ID, ChainSwitchNotSupportedError, PinWalletConnector
from .framework import (
    ConnectResult,
    Connector,
    ConnectorEmitter,
    FrameworkConnection,
    FrameworkStatus,
    MultiChainFramework,
)
from .reconciler import SyncAction, SyncReconciler

__all__ = [
    "CONNECTOR_ID",
    "ChainSwitchNotSupportedError",
    "PinWalletConnector",
    "ConnectResult",
    "Connector",
    "ConnectorEmitter",
    "FrameworkConnection",
    "FrameworkStatus",
    "MultiChainFramework",
    "SyncAction",
    "SyncReconciler",
]
