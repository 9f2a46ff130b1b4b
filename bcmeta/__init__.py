"""
Business Central Page Metadata Client
=====================================

A protocol client that opens pages over the web client's private duplex
protocol and extracts agent-facing metadata: visible fields, available
actions, and permissions.

Flow: Authenticate → Connect → Open Session → Open Page → Load Sub-forms → Aggregate
"""

__version__ = "0.1.0"
