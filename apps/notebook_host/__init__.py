"""
Host side of the DuckDB notebook.

- permission_store: persisted "allow external file reads" setting
- write_queue: global FIFO of host file mutations
- filesystem: destination filesystems for exported results
- prompts: user-facing decisions and notifications
- host: message dispatcher for one notebook
- main: command-line entry point
"""
