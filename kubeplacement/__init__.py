"""Scheduling plugins for NUMA-aware, QoS-aware and load-aware node placement."""

__version__ = "0.1.0"