"""Interior sheet sync engine.

Bidirectional synchronization between the DuAn / LayoutIDs spreadsheet tabs and
the interior quoting database (pull, push, preview) with a per-run audit log.
"""

__version__ = "0.1.0"
