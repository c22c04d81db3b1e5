"""Import one bundle into several environments at once.

Each environment gets its own ``python -m deckporter import`` child process;
the children share nothing and one failing does not stop the others.

Plan file (JSON5):

    {
      common: {oldDeckId: "SpanishTest", testAuto: "TEMP", renameConflict: false},
      environments: [
        {environment: "localhost", user: "test_admin", password: "...",
         host: "localhost", port: 4000, protocol: "http"},
        {environment: "test", user: "test_admin", password: "...",
         host: "example-test.herokuapp.com", port: "none", protocol: "https"},
      ],
    }
"""

import os
import subprocess
import sys
import threading
from pathlib import Path

import json5

from deckporter.errors import ValidationError

# plan key -> import flag
COMMON_OPTIONS = (
    ('oldDeckId', '--old-deck-id'),
    ('file', '--file'),
    ('deckName', '--deck-name'),
    ('owner', '--owner'),
    ('testAuto', '--test-auto'),
    ('responses', '--responses'),
    ('existingDeckId', '--existing-deck-id'),
)
ENVIRONMENT_OPTIONS = (
    ('user', '--user'),
    ('host', '--host'),
    ('port', '--port'),
    ('protocol', '--protocol'),
)


def load_plan(path):
    """Read and check a batch plan file."""
    path = Path(path)
    try:
        plan = json5.loads(path.read_text(encoding='utf-8'))
    except ValueError as e:
        raise ValidationError(f"Cannot parse batch plan {path}: {e}") from e

    environments = plan.get('environments') if isinstance(plan, dict) else None
    if not environments:
        raise ValidationError(f"Batch plan {path} lists no environments")
    for idx, environment in enumerate(environments):
        if not environment.get('environment'):
            raise ValidationError(f"Environment {idx} in {path} has no 'environment' name")
    plan.setdefault('common', {})
    return plan


def build_command(common, environment, path=None):
    """Command line of the import child for one environment."""
    command = [sys.executable, '-m', 'deckporter', 'import']
    if path:
        command += ['--path', str(path)]

    for key, flag in COMMON_OPTIONS:
        if common.get(key) not in (None, ''):
            command += [flag, str(common[key])]
    for key, flag in ENVIRONMENT_OPTIONS:
        if environment.get(key) not in (None, ''):
            command += [flag, str(environment[key])]

    if common.get('renameConflict'):
        command.append('--rename-conflict')
    command += ['--log-dir', environment['environment']]
    return command


def build_env(environment):
    """Child environment; the password travels here rather than in argv."""
    env = dict(os.environ)
    if environment.get('password'):
        env['ADMIN_PASSWORD'] = str(environment['password'])
    return env


def _relay(name, pipe, stream, lock):
    for line in pipe:
        with lock:
            print(f"{name}: {line.rstrip()}", file=stream or sys.stdout, flush=True)
    pipe.close()


def run_batch(plan, path=None, runner=subprocess.Popen, stream=None):
    """Start one import per environment and wait for all of them.

    Returns:
        dict: environment name -> child exit code
    """
    common = plan.get('common', {})
    lock = threading.Lock()
    children = []

    for environment in plan['environments']:
        name = environment['environment']
        child = runner(
            build_command(common, environment, path),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=build_env(environment),
            text=True,
        )
        relay = threading.Thread(target=_relay, args=(name, child.stdout, stream, lock), daemon=True)
        relay.start()
        children.append((name, child, relay))

    codes = {}
    for name, child, relay in children:
        codes[name] = child.wait()
        relay.join()
        with lock:
            print(f"{name}: child process exited with code {codes[name]}",
                  file=stream or sys.stdout, flush=True)
    return codes
