"""Built-in CLI sub-commands for warden.

* :mod:`~warden.commands.auth` -- inspect and manage stored OAuth
  credentials outside of a supervised run.

The long-lived ``run`` command lives in :mod:`warden.app` itself.
"""
