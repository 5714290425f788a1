"""Shared test fixtures for the Lodestar test suite.

Available Fixtures
==================

Configuration (from tests/fixtures/config.py)
---------------------------------------------

Fixtures:
    make_reader: Factory building a ConfigurationReader from keyword
        overrides, isolated from LODESTAR_* variables and YAML files.
    config_reader: A ConfigurationReader with default settings.

svn collaborators (from tests/fixtures/svn.py)
----------------------------------------------

Classes:
    FakeBackend: In-memory SvnBackend. Set ``entries`` to control what
        ``get_status`` returns; every other call is an AsyncMock.
    FakeSecretStore: Dict-backed SecretStore.
    FakeFocus: FocusTracker whose focus is toggled with ``set_focused``.
    RecordingSleep: Sleep replacement that records delays without waiting.
    FakeObserver: watchdog Observer stand-in that never starts a thread.

Functions:
    entry: Shorthand for building a StatusEntry.
    svn_error: Builds an SvnError carrying an error code.

Fixtures:
    backend: FakeBackend rooted in a temporary directory.
    secret_store: Empty FakeSecretStore.
    recording_sleep: RecordingSleep instance.
    repository: Repository over ``backend`` with default configuration.
    make_repository: Factory for repositories over ``backend`` with
        keyword overrides; each is disposed at teardown.
"""
