"""Resolution engine.

This package runs the stages of resolving one work item, from the first
agent iteration to the last remote build fix.

Key Components:
    - IterationEngine: Bounded agent iterations with git-observed results
    - CommitStrategist: Per-iteration or single-final commits, squashing
    - BuildMonitor: Polls the project's remote build commands
    - PublishOrchestrator: Finalize, safety gate, publish command, backend
    - RemoteFixLoop: Fix, push and re-poll a failing remote build
    - ResolutionPipeline: Wires all of the above for one item

Example:
    >>> from ticket_pilot.engine.orchestrator import ResolutionPipeline, ResolveRequest
    >>> result = await pipeline.resolve(ResolveRequest(item_key="PROJ-42"))
"""
