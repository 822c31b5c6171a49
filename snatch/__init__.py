"""
claude-snatch: offline reconstruction core for Claude Code session logs.

Parses append-only JSONL session files, re-links records into a conversation
tree, and exposes grouping, retry and billing views over that tree.
"""

__version__ = '0.1.0'
