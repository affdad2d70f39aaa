import argparse
import getpass
import logging
import signal
import sys
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from . import config
from .core import LibraryApp
from .database.ops import MOVIE_FILTERS
from .exceptions import LibCatError
from .metadata.tmdb import TMDBClient
from .models import Movie, ScanCancelledEvent, ScanProgressEvent, ScanResult, Tag
from .scanning.orchestrator import CancellationToken


def setup_logging(data_dir: Path, verbose: bool):
    """Sets up logging to both console and a file in the data directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    data_dir.mkdir(parents=True, exist_ok=True)
    log_file = data_dir / config.LOG_FILENAME

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="LibCat: local video library catalog")
    p.add_argument("--data-dir", type=Path, default=config.DEFAULT_DATA_DIR,
                   help=f"Data directory (default: {config.DEFAULT_DATA_DIR}, or $LIBCAT_HOME)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    # Shared by every command that works inside a library
    lib = argparse.ArgumentParser(add_help=False)
    lib.add_argument("--profile", help="Profile name or id (optional when only one exists)")
    lib.add_argument("--password", help="Profile password (prompted when needed)")

    sub = p.add_subparsers(dest="command", required=True)

    prof = sub.add_parser("profile", help="Manage profiles")
    prof_sub = prof.add_subparsers(dest="action", required=True)
    prof_sub.add_parser("list", help="List profiles")
    create = prof_sub.add_parser("create", help="Create a profile")
    create.add_argument("name")
    create.add_argument("--password", help="Protect the profile with a password")
    rename = prof_sub.add_parser("rename", help="Rename a profile")
    rename.add_argument("profile")
    rename.add_argument("new_name")
    delete = prof_sub.add_parser("delete", help="Delete a profile and its library")
    delete.add_argument("profile")

    scan = sub.add_parser("scan", parents=[lib], help="Scan a folder for videos")
    scan.add_argument("folder", type=Path)

    add = sub.add_parser("add", parents=[lib], help="Add individual video files")
    add.add_argument("paths", nargs="+")

    lst = sub.add_parser("list", parents=[lib], help="List cataloged movies")
    lst.add_argument("--filter", choices=MOVIE_FILTERS, default="all")
    lst.add_argument("--tag", help="Only movies carrying this tag (name or id)")

    tag = sub.add_parser("tag", help="Manage tags and tag movies")
    tag_sub = tag.add_subparsers(dest="action", required=True)
    tag_sub.add_parser("list", parents=[lib], help="List tags")
    tag_create = tag_sub.add_parser("create", parents=[lib], help="Create a tag")
    tag_create.add_argument("name")
    tag_create.add_argument("--color", help=f"Hex colour (default: {config.DEFAULT_TAG_COLOR})")
    tag_rename = tag_sub.add_parser("rename", parents=[lib], help="Rename or recolour a tag")
    tag_rename.add_argument("tag")
    tag_rename.add_argument("new_name", nargs="?")
    tag_rename.add_argument("--color")
    tag_delete = tag_sub.add_parser("delete", parents=[lib], help="Delete a tag")
    tag_delete.add_argument("tag")
    for action, help_text in (("add", "Tag a movie"), ("remove", "Remove a tag from a movie")):
        tag_link = tag_sub.add_parser(action, parents=[lib], help=help_text)
        tag_link.add_argument("movie_id", type=int)
        tag_link.add_argument("tag")
    tag_show = tag_sub.add_parser("show", parents=[lib], help="Show a movie's tags")
    tag_show.add_argument("movie_id", type=int)

    search = sub.add_parser("search", parents=[lib], help="Search the catalog")
    search.add_argument("query")

    key = sub.add_parser("set-api-key", parents=[lib], help="Set (or clear with '') the TMDB API key")
    key.add_argument("key")

    match = sub.add_parser("match", parents=[lib], help="Auto-match a movie against TMDB")
    match.add_argument("movie_id", type=int)

    thumb = sub.add_parser("thumbnail", parents=[lib], help="Regenerate or replace a thumbnail")
    thumb.add_argument("movie_id", type=int)
    thumb.add_argument("--image", type=Path, default=None, help="Use this image instead of a video frame")

    return p.parse_args(argv)


class ProgressBar:
    """Progress sink feeding a tqdm bar."""

    def __init__(self, desc: str):
        self.desc = desc
        self.bar: Optional[tqdm] = None

    def __call__(self, event):
        if isinstance(event, ScanProgressEvent):
            if self.bar is None:
                self.bar = tqdm(total=event.total, desc=self.desc, unit="file")
            self.bar.set_postfix_str(event.file_name, refresh=False)
            self.bar.update(event.current - self.bar.n)
        elif isinstance(event, ScanCancelledEvent):
            tqdm.write(f"Cancelled: {event.processed} new files of {event.total}")

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


@contextmanager
def cancel_on_interrupt(token: CancellationToken):
    """Turns Ctrl-C into a cancellation request for the running scan."""
    def handler(signum, frame):
        logging.warning("Interrupt received, finishing the current file...")
        token.cancel()

    original = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original)


def open_library(app: LibraryApp, args) -> str:
    """Resolves --profile and unlocks it. Returns the profile name."""
    if args.profile:
        profile = app.resolve_profile(args.profile)
    elif len(app.profiles.profiles) == 1:
        profile = app.profiles.profiles[0]
    elif not app.profiles.profiles:
        profile = app.profiles.create("Default")
        logging.info("No profiles yet, created 'Default'")
    else:
        raise LibCatError("Several profiles exist, choose one with --profile")

    password = args.password
    if password is None and app.profiles.has_password(profile.id):
        password = getpass.getpass(f"Password for '{profile.name}': ")
    app.unlock(profile.id, password)
    return profile.name


def summarize(results: List[ScanResult]):
    counts = Counter(r.state.value for r in results)
    logging.info("--- Summary ---")
    for state, count in sorted(counts.items()):
        logging.info(f"{state:<18} {count}")


def print_movies(movies: List[Movie]):
    for m in movies:
        year = f" ({m.year})" if m.year else ""
        flags = ("W" if m.watched else "-") + ("F" if m.favorite else "-")
        tmdb = f" tmdb:{m.tmdb_id}" if m.tmdb_id else ""
        print(f"{m.id:>5} {flags} {m.title}{year}{tmdb}")
    print(f"{len(movies)} movies")


def run_profile_command(app: LibraryApp, args):
    if args.action == "list":
        for p in app.profiles.list_profiles():
            lock = " [protected]" if p.password_hash else ""
            print(f"{p.id}  {p.name}{lock}")
    elif args.action == "create":
        p = app.profiles.create(args.name, args.password)
        print(f"Created profile '{p.name}' ({p.id})")
    elif args.action == "rename":
        p = app.resolve_profile(args.profile)
        renamed = app.profiles.rename(p.id, args.new_name)
        print(f"Renamed profile to '{renamed.name}'")
    elif args.action == "delete":
        p = app.resolve_profile(args.profile)
        app.profiles.delete(p.id)
        print(f"Deleted profile '{p.name}'")


def print_tags(tags: List[Tag]):
    for t in tags:
        print(f"{t.id:>5} {t.name} {t.color}")
    print(f"{len(tags)} tags")


def run_tag_command(app: LibraryApp, args):
    if args.action == "list":
        print_tags(app.list_tags())
    elif args.action == "create":
        t = app.create_tag(args.name, args.color)
        print(f"Created tag '{t.name}' ({t.id})")
    elif args.action == "rename":
        t = app.rename_tag(args.tag, args.new_name, args.color)
        print(f"Tag {t.id} is now '{t.name}' {t.color}")
    elif args.action == "delete":
        app.delete_tag(args.tag)
        print(f"Deleted tag '{args.tag}'")
    elif args.action == "add":
        print_tags(app.tag_movie(args.movie_id, args.tag))
    elif args.action == "remove":
        print_tags(app.untag_movie(args.movie_id, args.tag))
    elif args.action == "show":
        print_tags(app.tags_for_movie(args.movie_id))


def run_scan(app: LibraryApp, args) -> List[ScanResult]:
    token = CancellationToken()
    bar = ProgressBar("Scanning" if args.command == "scan" else "Adding")
    app.orchestrator.sink = bar
    try:
        with cancel_on_interrupt(token):
            if args.command == "scan":
                return app.scan_folder(args.folder.resolve(), token)
            return app.add_paths(args.paths, token)
    finally:
        bar.close()
        app.orchestrator.sink = None


def run_library_command(app: LibraryApp, args):
    name = open_library(app, args)
    logging.debug(f"Using profile '{name}'")
    try:
        if args.command in ("scan", "add"):
            summarize(run_scan(app, args))
        elif args.command == "list":
            if args.tag:
                print_movies(app.movies_for_tag(args.tag))
            else:
                print_movies(app.list_movies(args.filter))
        elif args.command == "tag":
            run_tag_command(app, args)
        elif args.command == "search":
            print_movies(app.search_movies(args.query))
        elif args.command == "set-api-key":
            app.set_api_key(args.key)
        elif args.command == "match":
            matched, movie = app.auto_match(args.movie_id)
            if matched:
                print(f"Matched: {movie.title} ({movie.year}) {TMDBClient.movie_url(movie.tmdb_id)}")
            else:
                print(f"No TMDB match for '{movie.title}'")
        elif args.command == "thumbnail":
            if args.image:
                path = app.set_custom_thumbnail(args.movie_id, args.image)
            else:
                path = app.regenerate_thumbnail(args.movie_id)
            print(path or "Thumbnail generation failed")
    finally:
        app.lock()


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    data_dir = args.data_dir.expanduser().resolve()
    setup_logging(data_dir, args.verbose)
    logging.debug(f"Data dir: {data_dir}")

    app = LibraryApp(data_dir)

    try:
        if args.command == "profile":
            run_profile_command(app, args)
        else:
            run_library_command(app, args)
    except LibCatError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)


if __name__ == "__main__":
    main()
