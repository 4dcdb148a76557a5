"""Business logic services for the generation orchestrator.

Import modules directly, e.g.
``from reela.services.generation_controller import GenerationJobController``.
Nothing is re-exported here: ``reela.schemas`` imports the error classifier
at import time.
"""
