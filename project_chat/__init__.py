# FILE: project_chat/__init__.py
"""Project Chat: apply natural-language changes to a project and run it.

Subpackages:
- changes: snapshot -> prompt -> backend -> extract -> write pipeline
- supervisor: runs the project's ntwk.json start command as a child process
"""

__version__ = "0.1.0"
