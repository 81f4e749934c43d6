"""
Task engine.

Components:
- task_models.py: data structures (TaskDefinition, TaskState, TaskStatus, outcomes)
- task_store.py: in-memory registry of per-run task state + guarded transitions
- processes.py: subprocess spawning, output streaming, timeouts, kill-all
- executor.py: runs one task (handler > fn > command) to a terminal status
- callbacks.py: on_success / on_fail dispatch
- templates.py: predefined tasks and batch resolution
- task_scheduler.py: dependency gating + polling loop
- snapshot.py: ordered status view for renderers
- task_api.py: TaskRunner, the public entry point
"""
