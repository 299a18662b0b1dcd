"""ralph-dev: task and workflow state orchestration for autonomous agent drivers.

Every operation is load -> mutate -> persist against files under
``<workspace>/.ralph-dev/``. Nothing is kept in memory between invocations.
"""

__version__ = "0.4.0"
