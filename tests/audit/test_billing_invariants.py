"""
Audit checks over stored invoices.

Every invoice the consolidation workflow writes must pass
check_totals_identity() and check_derived_status() after a round-trip
through the database.  Hand-edited rows must fail them.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from billing_kernel.domain.dtos import ChargeLine, MaterialLine, PaymentUpdate
from billing_kernel.domain.values import PaymentStatus
from billing_kernel.invariants import check_derived_status, check_totals_identity
from billing_kernel.models.invoice import Invoice


def _stored_invoices(session) -> list[Invoice]:
    session.expire_all()
    return list(session.execute(select(Invoice)).scalars())


class TestStoredInvoicesPassAudit:

    def test_after_create_update_and_payment(
        self, session, consolidation, inward_request, make_record,
    ):
        a = make_record("MAN-A")
        b = make_record("MAN-B")
        c = make_record("MAN-C", quantity=Decimal("2.5"))

        first = consolidation.create_invoice(
            inward_request(
                records=[a],
                materials=[
                    MaterialLine("Spent solvent", Decimal("3.5"), Decimal("99.99")),
                    MaterialLine("Sludge", Decimal("1"), Decimal("0.005")),
                ],
                charges=(
                    ChargeLine("Freight", amount=Decimal("150.50")),
                ),
            )
        ).invoice
        second = consolidation.create_invoice(
            inward_request(records=[b], cgst_rate=Decimal("2.5"), sgst_rate=Decimal("2.5"))
        ).invoice

        consolidation.update_invoice(second.id, inward_request(records=[b, c], subtotal=Decimal("1234.56")))
        consolidation.record_payment(first.id, PaymentUpdate(Decimal("500"), date(2026, 2, 1)))

        invoices = _stored_invoices(session)

        assert len(invoices) == 2
        for invoice in invoices:
            assert check_totals_identity(invoice), invoice
            assert check_derived_status(invoice), invoice

    def test_zero_total_invoice_is_paid(self, session, consolidation, inward_request):
        consolidation.create_invoice(inward_request(materials=(), subtotal=Decimal("0")))

        (invoice,) = _stored_invoices(session)

        assert invoice.grand_total == Decimal("0.00")
        assert invoice.status == PaymentStatus.PAID.value
        assert check_derived_status(invoice)


class TestTamperedInvoicesFailAudit:

    def test_edited_grand_total(self, consolidation, inward_request):
        invoice = consolidation.create_invoice(inward_request()).invoice

        invoice.grand_total = Decimal("1179.00")

        assert not check_totals_identity(invoice)

    def test_edited_status(self, consolidation, inward_request):
        invoice = consolidation.create_invoice(inward_request()).invoice

        invoice.status = PaymentStatus.PAID.value

        assert not check_derived_status(invoice)

    def test_two_decimal_tax_rounding_detected(self, consolidation, inward_request):
        invoice = consolidation.create_invoice(
            inward_request(
                materials=(MaterialLine("Spent solvent", Decimal("1"), Decimal("1005")),)
            )
        ).invoice

        assert invoice.cgst == Decimal("90")
        invoice.cgst = Decimal("90.45")
        invoice.sgst = Decimal("90.45")

        assert not check_totals_identity(invoice)
