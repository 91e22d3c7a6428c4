import asyncio
import unittest

from pydantic import BaseModel, TypeAdapter

from campusdesk.backend.clients import ApiError
from campusdesk.cache import CacheManager, MemoryCacheBackend
from campusdesk.services.binder import Binder, normalize_key


class Plan(BaseModel):
    id: str
    name: str


PlanList = TypeAdapter(list[Plan])


def _binder() -> Binder:
    return Binder(CacheManager(backend=MemoryCacheBackend()))


class NormalizeKeyTests(unittest.TestCase):
    def test_tuple_keys_join_parts(self):
        self.assertEqual(normalize_key(('sections', 'school-1', 'all')), 'sections:school-1:all')

    def test_missing_parts_mean_skip(self):
        self.assertIsNone(normalize_key(None))
        self.assertIsNone(normalize_key(''))
        self.assertIsNone(normalize_key(('sections', None)))
        self.assertIsNone(normalize_key(('sections', '')))
        self.assertIsNone(normalize_key(()))


class BinderTests(unittest.TestCase):
    def test_skipped_key_never_fetches(self):
        binder = _binder()
        calls = []

        async def fetcher():
            calls.append(1)
            return []

        snapshot = asyncio.run(binder.read(('sections', None), fetcher))
        self.assertIsNone(snapshot.key)
        self.assertIsNone(snapshot.data)
        self.assertEqual(calls, [])

    def test_read_returns_typed_rows(self):
        binder = _binder()

        async def fetcher():
            return [{'id': 'p1', 'name': 'Basic'}]

        snapshot = asyncio.run(binder.read(('plans',), fetcher, adapter=PlanList))
        self.assertEqual(snapshot.data, [Plan(id='p1', name='Basic')])
        self.assertFalse(snapshot.is_loading)
        self.assertIsNone(snapshot.error)

    def test_concurrent_reads_share_one_request(self):
        binder = _binder()
        calls = {'n': 0}

        async def fetcher():
            calls['n'] += 1
            await asyncio.sleep(0.01)
            return [{'id': 'p1', 'name': 'Basic'}]

        async def scenario():
            return await asyncio.gather(
                binder.read(('plans',), fetcher, adapter=PlanList),
                binder.read(('plans',), fetcher, adapter=PlanList),
            )

        first, second = asyncio.run(scenario())
        self.assertEqual(calls['n'], 1)
        self.assertEqual(first.data, second.data)

    def test_older_response_never_overwrites_newer(self):
        binder = _binder()

        async def scenario():
            release = asyncio.Event()

            async def slow():
                await release.wait()
                return [{'id': 'old', 'name': 'Stale'}]

            async def fast():
                return [{'id': 'new', 'name': 'Fresh'}]

            pending = asyncio.ensure_future(binder.read(('plans',), slow, adapter=PlanList))
            await asyncio.sleep(0)
            await binder.mutate(('plans',), fast, adapter=PlanList, dedupe=False)
            release.set()
            await pending
            return binder.peek(('plans',), adapter=PlanList)

        snapshot = asyncio.run(scenario())
        self.assertEqual([plan.id for plan in snapshot.data], ['new'])

    def test_older_response_after_newer_failure_is_dropped(self):
        binder = _binder()

        async def scenario():
            release = asyncio.Event()

            async def seed():
                return ['v0']

            async def slow():
                await release.wait()
                return ['v1-old']

            async def broken():
                raise ApiError('newer request failed', status_code=503)

            await binder.read(('plans',), seed)
            pending = asyncio.ensure_future(binder.mutate(('plans',), slow, dedupe=False))
            await asyncio.sleep(0)
            await binder.mutate(('plans',), broken, dedupe=False)
            release.set()
            await pending
            return binder.peek(('plans',))

        snapshot = asyncio.run(scenario())
        self.assertEqual(snapshot.data, ['v0'])
        self.assertEqual(snapshot.error_message, 'newer request failed')

    def test_loading_flag_stays_on_while_newer_fetch_runs(self):
        binder = _binder()

        async def scenario():
            first_gate = asyncio.Event()
            second_gate = asyncio.Event()

            async def first():
                await first_gate.wait()
                return ['first']

            async def second():
                await second_gate.wait()
                return ['second']

            pending_first = asyncio.ensure_future(binder.read(('plans',), first))
            await asyncio.sleep(0)
            pending_second = asyncio.ensure_future(binder.mutate(('plans',), second, dedupe=False))
            await asyncio.sleep(0)
            first_gate.set()
            await pending_first
            during = binder.peek(('plans',))
            second_gate.set()
            await pending_second
            after = binder.peek(('plans',))
            return during, after

        during, after = asyncio.run(scenario())
        self.assertTrue(during.is_loading)
        self.assertFalse(after.is_loading)
        self.assertEqual(after.data, ['second'])

    def test_failed_refetch_keeps_previous_data(self):
        binder = _binder()

        async def ok():
            return [{'id': 'p1', 'name': 'Basic'}]

        async def broken():
            raise ApiError('Backend unavailable', status_code=503)

        async def scenario():
            await binder.read(('plans',), ok, adapter=PlanList)
            return await binder.mutate(('plans',), broken, adapter=PlanList)

        snapshot = asyncio.run(scenario())
        self.assertEqual([plan.id for plan in snapshot.data], ['p1'])
        self.assertEqual(snapshot.error_message, 'Backend unavailable')

    def test_success_clears_previous_error(self):
        binder = _binder()
        responses = [ApiError('boom'), [{'id': 'p1', 'name': 'Basic'}]]

        async def fetcher():
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        async def scenario():
            failed = await binder.read(('plans',), fetcher, adapter=PlanList)
            recovered = await binder.read(('plans',), fetcher, adapter=PlanList)
            return failed, recovered

        failed, recovered = asyncio.run(scenario())
        self.assertIsNotNone(failed.error)
        self.assertIsNone(failed.data)
        self.assertIsNone(recovered.error)
        self.assertEqual(len(recovered.data), 1)

    def test_local_patch_skips_network(self):
        binder = _binder()
        calls = {'n': 0}

        async def fetcher():
            calls['n'] += 1
            return [{'id': 'p1', 'name': 'Basic'}, {'id': 'p2', 'name': 'Pro'}]

        async def scenario():
            resource = binder.bind(('plans',), fetcher, PlanList)
            await resource.read()
            return await resource.mutate(data=lambda plans: [plan for plan in plans if plan.id != 'p2'])

        snapshot = asyncio.run(scenario())
        self.assertEqual(calls['n'], 1)
        self.assertEqual([plan.name for plan in snapshot.data], ['Basic'])

    def test_read_without_revalidate_uses_stored_value(self):
        binder = _binder()
        calls = {'n': 0}

        async def fetcher():
            calls['n'] += 1
            return [{'id': f'p{calls["n"]}', 'name': 'Plan'}]

        async def scenario():
            await binder.read(('plans',), fetcher, adapter=PlanList)
            return await binder.read(('plans',), fetcher, adapter=PlanList, revalidate=False)

        snapshot = asyncio.run(scenario())
        self.assertEqual(calls['n'], 1)
        self.assertEqual(snapshot.data[0].id, 'p1')

    def test_mutate_without_fetcher_or_data_is_an_error(self):
        binder = _binder()
        with self.assertRaises(ValueError):
            asyncio.run(binder.mutate(('plans',)))

    def test_invalidate_prefix_drops_tenant_keys(self):
        binder = _binder()

        async def fetcher():
            return ['row']

        asyncio.run(binder.read(('sections', 'school-1', 'all'), fetcher))
        asyncio.run(binder.read(('sections', 'school-1', 'campus-2'), fetcher))
        binder.invalidate_prefix('sections:school-1')
        self.assertIsNone(binder.peek(('sections', 'school-1', 'all')).data)
        self.assertIsNone(binder.peek(('sections', 'school-1', 'campus-2')).data)


if __name__ == '__main__':
    unittest.main()
