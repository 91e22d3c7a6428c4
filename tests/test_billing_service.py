import asyncio
import json
import unittest
from datetime import date, datetime, timezone

import httpx
from freezegun import freeze_time

from campusdesk.backend.supabase import SupabaseClient
from campusdesk.schemas import BillingPlan, BillingRecord
from campusdesk.services import billing_service, export_service


class FixedClock:
    def now(self):
        return datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)

    def today(self):
        return date(2024, 3, 5)

    def epoch_ms(self):
        return 1709632812345


def _record(**overrides) -> BillingRecord:
    values = {
        'id': 'r1',
        'school_id': 's1',
        'school_name': 'Green Valley',
        'billing_plan_id': 'p1',
        'subscription_plan': 'Pro',
        'billing_cycle': 'Monthly',
        'amount': 150,
        'due_date': '2024-04-05',
        'payment_status': 'unpaid',
        'invoice_number': 'INV-2024-812345',
        'start_date': '2024-03-05',
    }
    values.update(overrides)
    return BillingRecord.model_validate(values)


class BillingCalculationTests(unittest.TestCase):
    def test_amount_follows_cycle(self):
        plan = BillingPlan(id='p1', name='Pro', monthly_price=150, quarterly_price=400, yearly_price=1500)
        self.assertEqual(billing_service.calculate_billing_amount(plan, 'Monthly'), 150)
        self.assertEqual(billing_service.calculate_billing_amount(plan, 'Quarterly'), 400)
        self.assertEqual(billing_service.calculate_billing_amount(plan, 'Yearly'), 1500)

    def test_due_date_clamps_to_month_end(self):
        self.assertEqual(billing_service.calculate_due_date(date(2024, 1, 31), 'Monthly'), date(2024, 2, 29))
        self.assertEqual(billing_service.calculate_due_date(date(2024, 11, 30), 'Quarterly'), date(2025, 2, 28))
        self.assertEqual(billing_service.calculate_due_date(date(2024, 2, 29), 'Yearly'), date(2025, 2, 28))
        self.assertEqual(billing_service.calculate_due_date(date(2024, 3, 15), 'Monthly'), date(2024, 4, 15))

    def test_invoice_number_uses_year_and_clock_tail(self):
        self.assertEqual(billing_service.generate_invoice_number(FixedClock()), 'INV-2024-812345')

    def test_stats_split_collected_and_outstanding(self):
        stats = billing_service.billing_stats(
            [
                _record(id='r1', amount=100, payment_status='paid'),
                _record(id='r2', amount=50.5, payment_status='overdue'),
                _record(id='r3', amount=20, payment_status='unpaid'),
            ]
        )
        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['collected'], 100)
        self.assertEqual(stats['outstanding'], 70.5)
        self.assertEqual(stats['counts']['overdue'], 1)
        self.assertEqual(stats['counts']['pending'], 0)

    def test_flatten_record_lifts_joined_names(self):
        flat = billing_service.flatten_record(
            {'id': 'r1', 'schools': {'name': 'Green Valley'}, 'billing_plans': {'name': 'Pro'}}
        )
        self.assertEqual(flat, {'id': 'r1', 'school_name': 'Green Valley', 'subscription_plan': 'Pro'})


class MarkPaidTests(unittest.TestCase):
    @freeze_time('2024-03-05 10:00:00')
    def test_mark_paid_sends_payment_date(self):
        seen = {}

        def handler(request: httpx.Request):
            seen['method'] = request.method
            seen['params'] = dict(request.url.params)
            seen['body'] = json.loads(request.content)
            return httpx.Response(204)

        async def scenario():
            supabase = SupabaseClient('http://supabase.test', 'anon', transport=httpx.MockTransport(handler))
            try:
                return await billing_service.mark_paid(supabase, _record(), token='jwt')
            finally:
                await supabase.aclose()

        updated = asyncio.run(scenario())
        self.assertEqual(updated.payment_status, 'paid')
        self.assertEqual(updated.payment_date, date(2024, 3, 5))
        self.assertEqual(seen['method'], 'PATCH')
        self.assertEqual(seen['params'], {'id': 'eq.r1'})
        self.assertEqual(seen['body'], {'payment_status': 'paid', 'payment_date': '2024-03-05'})

    def test_paid_record_cannot_be_paid_again(self):
        async def scenario():
            supabase = SupabaseClient('http://supabase.test', 'anon', transport=httpx.MockTransport(lambda _r: httpx.Response(204)))
            try:
                await billing_service.mark_paid(supabase, _record(payment_status='paid'), token='jwt')
            finally:
                await supabase.aclose()

        with self.assertRaises(billing_service.BillingStateError):
            asyncio.run(scenario())


class BillingExportTests(unittest.TestCase):
    def test_csv_has_header_and_na_payment_date(self):
        content = export_service.billing_csv([_record(), _record(id='r2', payment_status='paid', payment_date='2024-03-10', amount=99.5)])
        lines = content.splitlines()
        self.assertEqual(lines[0], 'School Name,Invoice Number,Plan,Billing Cycle,Amount,Due Date,Status,Payment Date')
        self.assertEqual(lines[1], 'Green Valley,INV-2024-812345,Pro,Monthly,$150,2024-04-05,unpaid,N/A')
        self.assertTrue(lines[2].endswith('$99.5,2024-04-05,paid,2024-03-10'))

    def test_empty_export_is_header_only(self):
        self.assertEqual(export_service.billing_csv([]).splitlines(), [','.join(export_service.BILLING_CSV_HEADERS)])

    def test_report_filename_uses_today(self):
        self.assertEqual(export_service.billing_report_filename(FixedClock()), 'billing-report-2024-03-05.csv')

    def test_invoice_document_is_printable(self):
        document = export_service.render_invoice(_record(), print_delay_ms=0)
        self.assertIn('INV-2024-812345', document)
        self.assertIn('Green Valley', document)
        self.assertIn('window.print', document)
        self.assertIn('150', document)


if __name__ == '__main__':
    unittest.main()
