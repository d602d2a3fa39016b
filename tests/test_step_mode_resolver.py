from __future__ import annotations

import unittest

from gate_office.models import EntryStatus
from gate_office.services.step_mode_resolver import (
    FetchFailed,
    RecordFound,
    RecordNotFound,
    StepMode,
    UserAction,
    resolve_step_mode,
)


class StepModeResolverTests(unittest.TestCase):
    def _resolve(self, outcome, action=UserAction.NONE, status=EntryStatus.IN_PROGRESS, **kwargs):
        return resolve_step_mode(
            session_exists=True,
            fetch_outcome=outcome,
            prior_action=action,
            session_status=status,
            **kwargs,
        )

    def test_new_session_is_create(self) -> None:
        resolution = resolve_step_mode(
            session_exists=False,
            fetch_outcome=None,
            prior_action=UserAction.NONE,
            session_status=None,
        )

        self.assertEqual(resolution.mode, StepMode.CREATE)
        self.assertEqual(resolution.submit_verb, 'create')
        self.assertTrue(resolution.editable)

    def test_missing_record_then_fill_data(self) -> None:
        resolution = self._resolve(RecordNotFound())
        self.assertEqual(resolution.mode, StepMode.VIEW_LOCKED)
        self.assertTrue(resolution.missing_record)
        self.assertTrue(resolution.can_fill_data)
        self.assertIsNone(resolution.submit_verb)

        resolution = self._resolve(RecordNotFound(), UserAction.REQUESTED_FILL_DATA)
        self.assertEqual(resolution.mode, StepMode.FILL_MISSING)
        self.assertEqual(resolution.submit_verb, 'create')

    def test_missing_record_in_create_flow_is_create(self) -> None:
        resolution = self._resolve(RecordNotFound(), creating=True)

        self.assertEqual(resolution.mode, StepMode.CREATE)
        self.assertFalse(resolution.missing_record)

    def test_found_record_is_locked_until_edit(self) -> None:
        resolution = self._resolve(RecordFound({'id': 1}))
        self.assertEqual(resolution.mode, StepMode.VIEW_LOCKED)
        self.assertTrue(resolution.can_request_edit)

        resolution = self._resolve(RecordFound({'id': 1}), UserAction.REQUESTED_EDIT)
        self.assertEqual(resolution.mode, StepMode.EDIT_ACTIVE)
        self.assertEqual(resolution.submit_verb, 'update')

    def test_completed_session_never_becomes_editable(self) -> None:
        for action in UserAction:
            resolution = self._resolve(RecordFound({'id': 1}), action, EntryStatus.COMPLETED)
            self.assertNotEqual(resolution.mode, StepMode.EDIT_ACTIVE)
            self.assertFalse(resolution.can_request_edit)

    def test_server_failure_keeps_previous_mode_and_blocks(self) -> None:
        resolution = self._resolve(FetchFailed('boom'), previous_mode=StepMode.EDIT_ACTIVE)
        self.assertEqual(resolution.mode, StepMode.EDIT_ACTIVE)
        self.assertTrue(resolution.blocking)
        self.assertFalse(resolution.editable)

        resolution = self._resolve(FetchFailed('boom'))
        self.assertEqual(resolution.mode, StepMode.VIEW_LOCKED)
        self.assertTrue(resolution.blocking)

    def test_same_inputs_give_same_resolution(self) -> None:
        outcome = RecordFound({'id': 7})

        first = self._resolve(outcome, UserAction.REQUESTED_EDIT)
        second = self._resolve(outcome, UserAction.REQUESTED_EDIT)

        self.assertEqual(first, second)
        self.assertEqual(outcome.data, {'id': 7})


if __name__ == '__main__':
    unittest.main()
