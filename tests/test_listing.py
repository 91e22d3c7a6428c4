import unittest
from datetime import date, datetime
from campusdesk.services.date_range import DatePicker, DateRange
from campusdesk.services.forms import FormValidationError
from campusdesk.services.listing_service import ListingState, apply_listing, filter_rows, page_count


ROWS = [
    {'school_name': 'Green Valley', 'invoice_number': 'INV-2024-000001', 'payment_status': 'paid'},
    {'school_name': 'Blue Hill', 'invoice_number': 'INV-2024-000002', 'payment_status': 'overdue'},
    {'school_name': 'Greenwood', 'invoice_number': 'INV-2024-000003', 'payment_status': 'unpaid'},
]


class ListingTests(unittest.TestCase):
    def test_search_is_case_insensitive_across_fields(self):
        state = ListingState(search='GREEN', page_size=10)
        names = [row['school_name'] for row in filter_rows(ROWS, state, ('school_name', 'invoice_number'))]
        self.assertEqual(names, ['Green Valley', 'Greenwood'])

    def test_all_filter_matches_everything(self):
        state = ListingState(filters={'payment_status': 'all'}, page_size=10)
        self.assertEqual(len(filter_rows(ROWS, state, ('school_name',))), 3)

    def test_search_and_filter_combine(self):
        state = ListingState(search='green', filters={'payment_status': 'paid'}, page_size=10)
        rows = filter_rows(ROWS, state, ('school_name',))
        self.assertEqual([row['invoice_number'] for row in rows], ['INV-2024-000001'])

    def test_changing_search_or_filter_resets_page(self):
        state = ListingState(page=3, page_size=1)
        self.assertEqual(state.with_search('x').page, 1)
        self.assertEqual(state.with_filter('payment_status', 'paid').page, 1)

    def test_page_count_and_clamping(self):
        self.assertEqual(page_count(0, 10), 0)
        self.assertEqual(page_count(11, 10), 2)
        page = apply_listing(ROWS, ListingState(page=9, page_size=2), ('school_name',))
        self.assertEqual(page.page, 2)
        self.assertEqual(page.page_count, 2)
        self.assertEqual(len(page.rows), 1)
        self.assertEqual((page.first_index, page.last_index), (3, 3))

    def test_empty_rows_report_zero_pages(self):
        page = apply_listing([], ListingState(page_size=10), ('school_name',))
        self.assertEqual(page.page_count, 0)
        self.assertEqual(page.rows, [])
        self.assertFalse(page.has_next)

    def test_from_query_reads_filters_and_ignores_junk_page(self):
        state = ListingState.from_query({'search': ' hill ', 'page': 'abc', 'payment_status': 'overdue'}, filter_names=('payment_status',))
        self.assertEqual(state.search, 'hill')
        self.assertEqual(state.page, 1)
        self.assertEqual(state.query(), {'search': 'hill', 'payment_status': 'overdue', 'page': 1})


class FixedClock:
    def __init__(self, value: date):
        self.value = value

    def now(self):
        return datetime(self.value.year, self.value.month, self.value.day, 9, 0)

    def today(self):
        return self.value


class DateRangeTests(unittest.TestCase):
    def test_day_is_clamped_when_month_shrinks(self):
        picker = DatePicker(2024, 1, 31).with_month(2)
        self.assertEqual(picker.to_date(), date(2024, 2, 29))
        self.assertEqual(DatePicker(2023, 2, 30).to_date(), date(2023, 2, 28))

    def test_default_is_first_of_month_to_today(self):
        date_range = DateRange.default(FixedClock(date(2024, 5, 17)))
        self.assertEqual(date_range.start_date, date(2024, 5, 1))
        self.assertEqual(date_range.end_date, date(2024, 5, 17))
        self.assertFalse(date_range.submitted)

    def test_from_query_parses_pickers(self):
        params = {
            'start_month': '2', 'start_day': '31', 'start_year': '2024',
            'end_month': '3', 'end_day': '10', 'end_year': '2024', 'go': '1',
        }
        date_range = DateRange.from_query(params, FixedClock(date(2024, 5, 17)))
        self.assertEqual(date_range.start_date, date(2024, 2, 29))
        self.assertEqual(date_range.end_date, date(2024, 3, 10))
        self.assertTrue(date_range.submitted)
        date_range.validate()

    def test_inverted_range_is_rejected(self):
        date_range = DateRange(start=DatePicker(2024, 4, 2), end=DatePicker(2024, 4, 1))
        with self.assertRaises(FormValidationError) as ctx:
            date_range.validate()
        self.assertEqual(ctx.exception.message, 'Start date must be before end date')

    def test_year_options_include_selected_years(self):
        date_range = DateRange(start=DatePicker(2010, 1, 1), end=DatePicker(2024, 1, 1))
        years = date_range.year_options(FixedClock(date(2024, 5, 17)))
        self.assertEqual(years[0], 2024)
        self.assertIn(2010, years)
        self.assertIn(2019, years)


if __name__ == '__main__':
    unittest.main()
