"""
insight-agent - real-time WebSocket sessions for a stateful AI agent.
"""

__version__ = "0.3.0"
