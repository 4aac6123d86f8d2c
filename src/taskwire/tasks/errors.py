class TaskError(Exception):
    """A task could not be carried out (missing record, missing dependency)."""
