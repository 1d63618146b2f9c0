"""
VoxEdit - Edit the open file by voice.

This package provides:
- Streaming transcription with utterance reconciliation (interim/final merging, idle timeout)
- LLM routing of each utterance to a command, a modification or a question
- Line-level diffing with move detection
- Atomic document replacement with transient change highlights

Main entry point: python -m voxedit <file>
"""

__version__ = "0.1.0"
