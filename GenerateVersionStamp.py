import subprocess
import sys
from pathlib import Path

VERSION_FILE = Path(__file__).resolve().parent / 'cVersion.py'

def git(*args: str) -> str:
    return subprocess.check_output(['git', *args], stderr=subprocess.DEVNULL).decode('utf-8').strip()

def version_stamp() -> str:
    """
    '<tag> / <date>' when HEAD is tagged, otherwise '<short sha> / <date>'.
    A trailing '-' on the version marks a dirty worktree.
    """
    short_sha = git('rev-parse', '--short', 'HEAD')

    try:
        version = git('describe', '--tags', '--exact-match', 'HEAD')
    except subprocess.CalledProcessError:
        version = short_sha

    if git('status', '--porcelain'):
        version += '-'

    commit_date = git('show', '-s', '--format=%as', 'HEAD')

    if version.rstrip('-') == short_sha:
        return f'{version} / {commit_date}'

    return f'{version} / {commit_date} ({short_sha})'

def create_version_file() -> None:
    try:
        stamp = version_stamp()
    except (OSError, subprocess.CalledProcessError):
        # Not a git checkout, or git missing; leave any shipped cVersion.py alone.
        print('GenerateVersionStamp.py: no git metadata, version not stamped.', file=sys.stderr)
        return

    VERSION_FILE.write_text(f"VERSION = '{stamp}'\n", encoding='utf-8')

if __name__ == "__main__":
    create_version_file()
