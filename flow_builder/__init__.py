"""
Flow Builder.

Client-side core for authoring and previewing conversational flows.
This package provides:

1. Flow Graph Model:
   - Flows, nodes, transitions and their wire format
   - Builder session state and undo/redo actions

2. Node Types:
   - Static registry (start, message, question, condition, action,
     AI response, API call, end)
   - Default configuration per node type

3. Canvas:
   - Builder state with persist-then-reconcile mutations
   - Command-pattern undo/redo, debounced autosave
   - Node and flow validation, transition geometry

4. Preview:
   - Step-by-step simulator walking the graph from START
   - Safe transition condition evaluation
   - Pluggable per-type node executors
"""

__version__ = "1.0.0"
