"""Run the generators of declared secrets in dependency order.

Generators only become runnable once everything they depend on exists,
and what exists is only known after running the generators before them.
So instead of sorting the graph up front we make passes over the pending
secrets, run those whose dependencies are satisfied and repeat until
nothing is pending or a pass makes no progress.
"""

import collections
from typing import Dict, Iterable, List, Optional

from agesmith import (
    CircularOrUnsatisfiedDependency,
    DependencyFailed,
    GeneratorFailed,
    NoRecipients,
    SecretError,
)
from agesmith._output import output
from agesmith.utils import call_with_optional_args

from . import (
    GenerationContext,
    GeneratorOutcome,
    SecretDeclaration,
    SecretStore,
    classify_outcome,
)
from .encryption import encrypt
from .generators import auto_generator
from .references import ReferenceResolver

GENERATED = "generated"
SKIPPED = "skipped"
FAILED = "failed"


class GenerationResult(object):
    def __init__(self, name, state, outcome=None, error=None, written=()):
        self.name = name
        self.state = state
        self.outcome = type(outcome).__name__ if outcome else None
        self.error = error
        self.written = list(written)

    def __repr__(self):
        return "<GenerationResult {} {}>".format(self.name, self.state)


class GenerationReport(object):
    """What happened to every secret a generation run looked at."""

    def __init__(self):
        self.results = collections.OrderedDict()

    def add(self, result: GenerationResult):
        self.results[result.name] = result

    def __getitem__(self, name) -> GenerationResult:
        return self.results[name]

    def __contains__(self, name):
        return name in self.results

    def _names(self, state):
        return [r.name for r in self.results.values() if r.state == state]

    @property
    def generated(self) -> List[str]:
        return self._names(GENERATED)

    @property
    def skipped(self) -> List[str]:
        return self._names(SKIPPED)

    @property
    def failed(self) -> List[str]:
        return self._names(FAILED)

    @property
    def errors(self) -> List[SecretError]:
        return [r.error for r in self.results.values() if r.error]


class GeneratorEngine(object):
    def __init__(
        self,
        store: SecretStore,
        identities: Iterable = (),
        force: bool = False,
        dry_run: bool = False,
    ):
        self.store = store
        self.identities = list(identities)
        self.force = force
        self.dry_run = dry_run
        self._generators = {}
        self._existing_secrets: Dict[str, Optional[bytes]] = {}

    def generator(self, declaration: SecretDeclaration):
        name = declaration.name
        if name not in self._generators:
            self._generators[name] = declaration.generator or auto_generator(
                name
            )
        return self._generators[name]

    def select(self, names=None, with_dependencies=True):
        if not names:
            return list(self.store)
        selected = self.store.select(names)
        if not with_dependencies:
            return selected
        wanted = set()
        todo = [d.name for d in selected]
        while todo:
            name = todo.pop()
            if name in wanted or name not in self.store:
                continue
            wanted.add(name)
            declaration = self.store[name]
            todo.extend(declaration.dependencies)
            todo.extend(
                ref
                for ref in declaration.references
                if ref in self.store and self.generator(self.store[ref])
            )
        return [d for d in self.store if d.name in wanted]

    def requirements(self, declaration, scheduled) -> List[str]:
        """Names that must be available before `declaration` can run.

        Recipients referring to secrets generated in this run are ordering
        requirements as well.
        """
        required = set(declaration.dependencies)
        required.update(
            ref
            for ref in declaration.references
            if ref in scheduled and ref != declaration.name
        )
        return sorted(required)

    def run(self, names=None, with_dependencies=True) -> GenerationReport:
        report = GenerationReport()
        pending = collections.OrderedDict()
        for declaration in self.select(names, with_dependencies):
            if self.generator(declaration) is None:
                continue
            name = declaration.name
            if self.store.is_materialized(name) and not self.force:
                output.line(
                    "{}: already exists (use --force to overwrite)".format(name)
                )
                report.add(GenerationResult(name, SKIPPED))
                continue
            pending[name] = declaration

        scheduled = set(pending)
        generated = set()
        failed = set()
        secrets: Dict[str, bytes] = {}
        publics: Dict[str, bytes] = {}

        while pending:
            progress = False
            done = frozenset(generated)
            pass_secrets = {}
            pass_publics = {}
            for name, declaration in list(pending.items()):
                required = self.requirements(declaration, scheduled)
                failed_deps = [d for d in required if d in failed]
                if failed_deps:
                    del pending[name]
                    progress = True
                    failed.add(name)
                    self._fail(
                        report, DependencyFailed.from_context(name, failed_deps)
                    )
                    continue
                if not all(
                    self._satisfied(d, scheduled, done) for d in required
                ):
                    continue

                del pending[name]
                progress = True
                context = self.context(declaration, done, secrets, publics)
                try:
                    outcome = self.invoke(declaration, context)
                    written = self.write(declaration, outcome, publics, done)
                except SecretError as e:
                    failed.add(name)
                    self._fail(report, e)
                    continue
                generated.add(name)
                if outcome.secret is not None:
                    pass_secrets[name] = outcome.secret
                if outcome.public is not None:
                    pass_publics[name] = outcome.public.strip()
                report.add(
                    GenerationResult(name, GENERATED, outcome, written=written)
                )

            # Fresh maps for the next pass, the old ones may still be
            # referenced by contexts handed out earlier.
            secrets = {**secrets, **pass_secrets}
            publics = {**publics, **pass_publics}

            if not progress:
                break

        if pending:
            stuck = {}
            unavailable = set()
            for name, declaration in pending.items():
                required = self.requirements(declaration, scheduled)
                stuck[name] = [
                    d
                    for d in required
                    if not self._satisfied(d, scheduled, generated)
                ]
                unavailable.update(d for d in stuck[name] if d not in scheduled)
            raise CircularOrUnsatisfiedDependency.from_context(
                stuck, unavailable, results=report
            )
        return report

    def _fail(self, report, error):
        output.error(str(error))
        report.add(GenerationResult(error.name, FAILED, error=error))

    def _satisfied(self, name, scheduled, done):
        if name in scheduled:
            return name in done
        return self.store.is_materialized(name)

    def existing_secret(self, name) -> Optional[bytes]:
        """Decrypt a secret that already exists on disk, once."""
        if name not in self._existing_secrets:
            value = None
            encrypted = self.store.encrypted_file(name)
            if encrypted.exists:
                try:
                    value = encrypted.decrypt(self.identities)
                except SecretError as e:
                    output.warn(
                        "{} is not available to generators: {}".format(name, e)
                    )
            self._existing_secrets[name] = value
        return self._existing_secrets[name]

    def dependency_closure(self, declaration) -> List[str]:
        seen = set()
        todo = list(declaration.dependencies)
        while todo:
            name = todo.pop()
            if name in seen:
                continue
            seen.add(name)
            if name in self.store:
                todo.extend(self.store[name].dependencies)
        seen.discard(declaration.name)
        return sorted(seen)

    def context(self, declaration, generated, secrets, publics):
        """Build the values of the dependencies, direct and indirect."""
        context_secrets = {}
        context_publics = {}
        for dep in self.dependency_closure(declaration):
            if dep in generated:
                if dep in secrets:
                    context_secrets[dep] = secrets[dep]
                if dep in publics:
                    context_publics[dep] = publics[dep]
                continue
            public = self.store.read_public(dep)
            if public is not None:
                context_publics[dep] = public
            secret = self.existing_secret(dep)
            if secret is not None:
                context_secrets[dep] = secret
        return GenerationContext(
            declaration.name, context_secrets, context_publics
        )

    def invoke(self, declaration, context) -> GeneratorOutcome:
        generator = self.generator(declaration)
        output.annotate("Generating {}".format(declaration.name), debug=True)
        try:
            value = call_with_optional_args(
                generator,
                context=context,
                secrets=context.secrets,
                publics=context.publics,
                name=declaration.name,
            )
        except Exception as e:
            raise GeneratorFailed.from_context(declaration.name, e)
        return classify_outcome(declaration.name, value)

    def write(self, declaration, outcome, publics, done=()) -> List[str]:
        """Persist an outcome. Nothing is written before encryption
        succeeded and nothing at all in a dry run."""
        name = declaration.name
        encrypted = self.store.encrypted_file(name)
        public = self.store.public_file(name)
        written = []

        if outcome.secret is not None:
            known = dict(publics)
            if outcome.public is not None:
                known[name] = outcome.public.strip()
            # Publics of secrets regenerated in this run come from memory only.
            fresh = set(done) | {name}
            recipients = ReferenceResolver(self.store, known, fresh).resolve(
                declaration
            )
            if not recipients:
                raise NoRecipients.from_context(name)
            if self.dry_run:
                encrypt(outcome.secret, recipients, declaration.armored, name)
            else:
                encrypted.write(outcome.secret, recipients, declaration.armored)
            written.append(str(encrypted.path))
        if outcome.public is not None:
            if not self.dry_run:
                public.write(outcome.public)
            written.append(str(public.path))

        if not self.dry_run:
            # Drop what the new outcome does not provide anymore.
            if outcome.secret is None:
                encrypted.delete()
            if outcome.public is None:
                public.delete()

        verb = "would write" if self.dry_run else "wrote"
        output.step(name, "{} {}".format(verb, ", ".join(written)))
        return written
