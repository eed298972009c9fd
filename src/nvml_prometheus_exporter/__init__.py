"""NVML Prometheus Exporter.

Prometheus exporter for NVIDIA GPUs that reads fan speed, memory, PCIe
replay, performance state, power and energy metrics via NVML on every scrape.
"""

__version__ = "0.1.0"
