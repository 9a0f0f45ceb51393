# tests/unit/test_authorization.py

from ticket_booking.application.authorization import Actor, Role, RoleBasedAuthorizer


authorizer = RoleBasedAuthorizer()

admin = Actor("admin-1", Role.ADMIN)
organizer = Actor("organizer-1", Role.ORGANIZER)
customer = Actor("customer-1", Role.CUSTOMER)


def test_admin_may_do_everything():
    assert authorizer.can_manage_event(admin, "someone-else")
    assert authorizer.can_confirm(admin, "customer-1", "organizer-9")
    assert authorizer.can_cancel(admin, "customer-1")
    assert authorizer.can_refund(admin, "customer-1", "organizer-9")
    assert authorizer.can_delete(admin)
    assert authorizer.can_operate_outbox(admin)


def test_organizer_limited_to_own_events():
    assert authorizer.can_manage_event(organizer)
    assert authorizer.can_manage_event(organizer, "organizer-1")
    assert not authorizer.can_manage_event(organizer, "organizer-2")

    assert authorizer.can_confirm(organizer, "customer-1", "organizer-1")
    assert not authorizer.can_confirm(organizer, "customer-1", "organizer-2")
    assert authorizer.can_view(organizer, "customer-1", "organizer-1")


def test_organizer_cannot_book_or_cancel_for_customers():
    assert not authorizer.can_create(organizer)
    assert not authorizer.can_cancel(organizer, "customer-1")
    assert not authorizer.can_delete(organizer)
    assert not authorizer.can_operate_outbox(organizer)


def test_customer_acts_only_on_own_bookings():
    assert authorizer.can_create(customer)
    assert authorizer.can_cancel(customer, "customer-1")
    assert authorizer.can_amend(customer, "customer-1")
    assert authorizer.can_pay(customer, "customer-1")

    assert not authorizer.can_cancel(customer, "customer-2")
    assert not authorizer.can_view(customer, "customer-2", "organizer-1")
    assert not authorizer.can_confirm(customer, "customer-1", "organizer-1")
    assert not authorizer.can_refund(customer, "customer-1", "organizer-1")
    assert not authorizer.can_manage_event(customer)
    assert not authorizer.can_operate_outbox(customer)
