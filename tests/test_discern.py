"""Tests for the Discern semantic router."""

import pytest

from thoughtline.discern import Discern
from thoughtline.errors import StepError

from conftest import Recorder, add_notes, classify_reply

CATEGORIES = ["billing", "technical", "account"]


class FailingClose(Recorder):
    def close(self):
        raise RuntimeError(f"{self.name} close failed")


def router(**kwargs):
    return Discern("category", "What kind of ticket is this?", CATEGORIES, **kwargs)


class TestRouting:
    """Dispatch by primary category."""

    async def test_routes_to_matching_unit(self, thought, provider):
        provider.queue(classify_reply("billing", "account"))
        await add_notes(thought, ("ticket", "I was charged twice"))
        billing, technical = Recorder("billing"), Recorder("technical")

        step = router(routes={"billing": billing, "technical": technical})
        result = await step.process(thought)

        assert billing.seen == [thought]
        assert technical.seen == []
        assert result.get_content("billing_ran") == "yes"
        assert thought.get_metadata("category", "secondary") == "account"

    async def test_no_route_passes_through(self, thought, provider):
        provider.queue(classify_reply("account"))
        billing = Recorder("billing")

        step = router(routes={"billing": billing})
        result = await step.process(thought)

        assert result is thought
        assert billing.seen == []
        assert step.scan(thought).primary == "account"

    async def test_fallback(self, thought, provider):
        provider.queue(classify_reply("account"))
        fallback = Recorder("fallback")
        await router(routes={"billing": Recorder()}, fallback=fallback).process(thought)
        assert fallback.seen == [thought]

    async def test_unlisted_category_passes_through(self, thought, provider):
        """A category outside the list is kept and the thought passes through."""
        provider.queue(classify_reply("unknown"))
        billing = Recorder("billing")

        step = Discern("category", "What kind?", ["billing", "technical"], routes={"billing": billing})
        result = await step.process(thought)

        assert result is thought
        assert billing.seen == []
        assert step.scan(thought).primary == "unknown"
        assert thought.published_count == len(thought.all_notes())

    async def test_unlisted_category_uses_fallback(self, thought, provider):
        provider.queue(classify_reply("unknown"))
        fallback = Recorder("fallback")

        step = Discern("category", "What kind?", ["billing", "technical"], fallback=fallback)
        await step.process(thought)

        assert fallback.seen == [thought]
        assert thought.get_content("fallback_ran") == "yes"
        assert step.scan(thought).primary == "unknown"

    async def test_route_failure_is_wrapped(self, thought, provider):
        provider.queue(classify_reply("billing"))
        step = router(routes={"billing": Recorder("billing", fail=True)})
        with pytest.raises(StepError, match="route 'billing' failed") as exc:
            await step.process(thought)
        assert exc.value.phase == "route"
        assert isinstance(exc.value.__cause__, RuntimeError)

    async def test_fallback_failure_is_wrapped(self, thought, provider):
        provider.queue(classify_reply("technical"))
        step = router(fallback=Recorder("fallback", fail=True))
        with pytest.raises(StepError, match="fallback failed"):
            await step.process(thought)

    async def test_route_added_after_construction(self, thought, provider):
        provider.queue(classify_reply("technical"))
        technical = Recorder("technical")
        step = router().add_route("technical", technical)
        await step.process(thought)
        assert technical.seen == [thought]


class TestRouteTable:
    """Route management."""

    def test_add_remove_has(self):
        step = router()
        step.add_route("billing", Recorder())
        assert step.has_route("billing")
        step.remove_route("billing")
        assert not step.has_route("billing")
        step.remove_route("never-added")

    def test_routes_is_a_copy(self):
        step = router(routes={"billing": Recorder()})
        step.routes().clear()
        assert step.has_route("billing")

    def test_clear_routes(self):
        step = router(routes={"billing": Recorder(), "technical": Recorder()})
        step.clear_routes()
        assert step.routes() == {}

    def test_requires_categories(self):
        with pytest.raises(ValueError):
            Discern("c", "q", [])


class TestClose:
    """close() reaches every route and the fallback."""

    def test_closes_everything(self):
        routes = {"billing": Recorder(), "technical": Recorder()}
        fallback = Recorder()
        router(routes=routes, fallback=fallback).close()
        assert all(unit.closed for unit in routes.values())
        assert fallback.closed

    def test_aggregates_close_errors(self):
        healthy = Recorder("healthy")
        step = router(
            routes={"billing": FailingClose("billing"), "technical": healthy},
            fallback=FailingClose("fallback"),
        )
        with pytest.raises(ExceptionGroup) as exc:
            step.close()
        assert len(exc.value.exceptions) == 2
        assert healthy.closed
