# ziptrials/verification/trial_matrix.py
# TrialMatrixGenerator -- produces the ordered trial matrix of a run.
#
# Matrix order:
#   create  -- one trial per policy (Always, Never, AsNecessary)
#   convert -- every (incoming, outgoing) pair, no mutation
#   update  -- every (incoming, outgoing) pair, rename + removal
#   huge    -- one in-place update of the huge fixture, when configured
# Entry counts are drawn from the run's seeded generator.

from typing import List

from ziptrials.engine.policy import Zip64Policy
from ziptrials.verification.data_models.trial_spec import OperationKind, TrialSpec
from ziptrials.verification.entry_factory import EntryFactory
from ziptrials.verification.harness_constants import (
    CONVERT_ENTRY_RANGE,
    CREATE_ENTRY_RANGE,
)

CREATE_POLICIES = (
    Zip64Policy.ALWAYS,
    Zip64Policy.NEVER,
    Zip64Policy.AS_NECESSARY,
)

CONVERT_POLICIES = (
    Zip64Policy.NEVER,
    Zip64Policy.ALWAYS,
    Zip64Policy.AS_NECESSARY,
)


class TrialMatrixGenerator:
    """
    Builds the TrialSpec list for one run. Each section can be switched off.
    """

    def __init__(
        self,
        factory:         EntryFactory,
        include_create:  bool = True,
        include_convert: bool = True,
        include_update:  bool = True,
        include_huge:    bool = False,
    ):
        self._factory        = factory
        self.include_create  = include_create
        self.include_convert = include_convert
        self.include_update  = include_update
        self.include_huge    = include_huge

    def generate(self) -> List[TrialSpec]:
        specs: List[TrialSpec] = []

        if self.include_create:
            for policy in CREATE_POLICIES:
                count = self._factory.entry_count(CREATE_ENTRY_RANGE)
                specs.append(TrialSpec(
                    trial_index=len(specs),
                    incoming_policy=policy,
                    outgoing_policy=policy,
                    operation=OperationKind.CREATE,
                    entry_count=count,
                    mutate=False,
                    huge_archive=False,
                    description=f"create {count} entries as 'zip64={policy.value}'",
                ))

        sections = []
        if self.include_convert:
            sections.append(OperationKind.CONVERT)
        if self.include_update:
            sections.append(OperationKind.UPDATE)
        for operation in sections:
            mutate = operation is OperationKind.UPDATE
            for incoming in CONVERT_POLICIES:
                for outgoing in CONVERT_POLICIES:
                    count = self._factory.entry_count(CONVERT_ENTRY_RANGE)
                    specs.append(TrialSpec(
                        trial_index=len(specs),
                        incoming_policy=incoming,
                        outgoing_policy=outgoing,
                        operation=operation,
                        entry_count=count,
                        mutate=mutate,
                        huge_archive=False,
                        description=(
                            f"create {count} entries as 'zip64={incoming.value}', then open "
                            f"it{', modify it' if mutate else ''} and re-save with "
                            f"'zip64={outgoing.value}'"
                        ),
                    ))

        if self.include_huge:
            specs.append(TrialSpec(
                trial_index=len(specs),
                incoming_policy=Zip64Policy.ALWAYS,
                outgoing_policy=Zip64Policy.ALWAYS,
                operation=OperationKind.UPDATE,
                entry_count=0,
                mutate=False,
                huge_archive=True,
                description="update the huge archive in place with 'zip64=Always'",
            ))

        return specs
