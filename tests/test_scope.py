import pytest

from fleetrent.common import AccessDeniedError, Scope, ValidationError


def test_restricted_scope_acts_on_own_company():
    scope = Scope.for_company('c1')
    assert scope.resolve_company() == 'c1'
    assert scope.resolve_company('c1') == 'c1'
    assert scope.filter_company() == 'c1'
    scope.ensure_access('c1')


def test_restricted_scope_rejects_other_company():
    scope = Scope.for_company('c1')
    with pytest.raises(AccessDeniedError):
        scope.resolve_company('c2')
    with pytest.raises(AccessDeniedError):
        scope.ensure_access('c2')
    with pytest.raises(AccessDeniedError):
        scope.filter_company('c2')


def test_unrestricted_scope():
    scope = Scope.all_companies()
    with pytest.raises(ValidationError):
        scope.resolve_company()
    assert scope.resolve_company('c2') == 'c2'
    assert scope.filter_company() is None
    assert scope.filter_company('c2') == 'c2'
    scope.ensure_access('anything')
    assert str(scope) == 'unrestricted'


def test_company_scope_requires_id():
    with pytest.raises(ValidationError):
        Scope.for_company('')
