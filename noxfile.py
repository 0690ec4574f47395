import nox

PYTHONS = ["3.11", "3.12", "3.13"]


@nox.session(python=PYTHONS)
def tests(session):
    session.install("-e", ".[dev]")
    session.run("pytest", "tests/a_unit", "tests/b_integration", *session.posargs)


@nox.session(python=PYTHONS[-1])
def e2e(session):
    session.install("-e", ".[dev]")
    session.run("pytest", "tests/c_e2e", *session.posargs)
