# treehole

The core of an anonymous bulletin board in plain Python, with no
third-party dependencies. Users post *holes* (threads) into *divisions*.
Each hole holds *floors* (replies). Every poster gets a random anonymous
name that is unique within the hole. All data is kept in SQLite. The
package also handles tags, favorite groups, subscriptions, likes, floor
history, admin logs and notifications.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `treehole.utils` | HTTP-style errors (`HttpError`, `BadRequest`, `Forbidden`, `NotFound`, `InternalServerError`), `Role`, `strip_content`, `intersect`, `difference`, `order_in_given_order`, `ids_of`, `require_answered_questions`, `log_action`, `request_log` |
| `treehole.names` | `NameGenerator`: random anonymous names, names unused in a hole, optional fuzzy display names |
| `treehole.cache` | `Cache`: a thread-safe in-memory cache that stores values as JSON; an expiration of `0` never expires |
| `treehole.textcheck` | Local checks that run before content goes to review: `find_images_in_markdown`, `check_valid_url`, `contains_unsafe_url`, `remove_id_repr`, `check_type`, `CheckType` and the errors `UrlParsingError`, `InvalidImageHostError`, `ImageLinkTextOnlyError` |
| `treehole.bot` | `BotMessage`, `FeishuMessage`, `BotSettings`, and `notify_qq` / `notify_feishu`, which POST JSON to a chat-bot URL |
| `treehole.db` | `Database` (schema, nestable transactions, `url_hostname_whitelist`), `AdminLogType`, `MessageType`, `Message`, `create_admin_log`, `save_message` |
| `treehole.favorite_groups` | `FavoriteGroup` and per-user groups: a default group `0` and at most ten groups in all |
| `treehole.favorites` | Adding, removing, replacing and moving favorite holes between groups |
| `treehole.subscriptions` | `get_subscriptions`, `add_subscription`, `remove_subscription` |
| `treehole.users` | `User`, `UserConfig`, `load_user`, `get_current_user`, ban messages |
| `treehole.tags` | `Tag`, `find_or_create_tags` (admin-only tags; only admins may create names that start with `#`, `@` or `*`), `update_tag_cache`, `preprocess_tags` |
| `treehole.notifications` | `Notification`, `merge_notifications`, `clean_notification_description`, `AdminList`, `Notifier` |
| `treehole.anonynames` | `new_anonyname`, `find_or_generate_anonyname` |
| `treehole.floors` | `Floor`, `parse_mention_ids`, `load_floor_mentions`, `FloorService` |
| `treehole.holes` | `Hole`, `HoleService` |
| `treehole.divisions` | `Division`, `preprocess_division`, `preprocess_divisions` |

## Examples

`strip_content` shortens text by characters, not by bytes:

```python
from treehole.utils import strip_content

strip_content("愿中国青年都摆脱冷气，只是向上走", 10)   # "愿中国青年都摆脱冷气"
```

Check markdown content before it goes to review. Image links must point
at an allowed image host. Any other URL must have a host that ends with
an entry of the hostname whitelist:

```python
from treehole.textcheck import (
    InvalidImageHostError,
    contains_unsafe_url,
    find_images_in_markdown,
    remove_id_repr,
)

find_images_in_markdown("![cat](https://example.com/cat.png)", ["example.com"])
# (["https://example.com/cat.png"], "cat")

try:
    find_images_in_markdown("![x](https://elsewhere.example.org/x.png)", ["example.com"])
except InvalidImageHostError:
    ...  # images on other hosts are rejected

contains_unsafe_url("see example.com/page", ["example.com"])   # (False, "")
remove_id_repr("reply to #12 and ##34")                          # "reply to  and"
```

Anonymous names that are unique within a hole:

```python
from treehole.names import NameGenerator

generator = NameGenerator(["Alice", "Bob", "Carol"], {}, False)
generator.generate(["Alice"])   # "Bob" or "Carol"
```

When every name is taken, `generate` adds a random six-character suffix,
for example `Bob_x7K2pQ`.

Favorite groups and subscriptions:

```python
from treehole.db import Database
from treehole.favorite_groups import add_favorite_group, get_favorite_groups
from treehole.subscriptions import add_subscription, get_subscriptions

db = Database(":memory:")
add_favorite_group(db, 1, "reading list")   # returns the new group id, 1
groups = get_favorite_groups(db, 1, None)   # the default group 0 and group 1
add_subscription(db, 1, 42)
get_subscriptions(db, 1)                    # [42]
db.close()
```

Posting a hole and a reply:

```python
from datetime import datetime, timedelta, timezone

from treehole.cache import Cache
from treehole.db import Database
from treehole.floors import Floor, FloorService
from treehole.holes import Hole, HoleService
from treehole.names import NameGenerator
from treehole.notifications import Notifier
from treehole.users import load_user

db = Database(":memory:")
cache = Cache()
notifier = Notifier(db, notification_url="")   # store messages, push nothing
floors = FloorService(db, notifier, NameGenerator(["Alice", "Bob", "Carol"]), cache)
holes = HoleService(db, floors, cache)

author = load_user(db, 1)
replier = load_user(db, 2)

hole = holes.create(Hole(division_id=1), Floor(content="hello"), author, ["chat"])
floors.create(Floor(content="hi there", hole_id=hole.id), replier)
# the hole's author now has a stored "reply" message

later = datetime.now(timezone.utc) + timedelta(seconds=1)
listed = holes.preprocess(holes.list(author, later, 10), author)
listed[0].to_dict()["floors"]["last_floor"]["content"]   # "hi there"
```

A content checker is a callable `checker(text, CheckType)` that returns
`True` when the text passes. `FloorService` also accepts a
`(passed, detail)` tuple. A floor that fails is shown as "该内容正在审核中",
and admins in the `AdminList` are asked to review it. Without a checker,
all content passes.

`Notifier.send` keeps only recipients who exist and have not opted out of
the message type. It stores the message, then POSTs it to
`<notification_url>/messages` if a URL is set. A reply other than `201`
raises `InternalServerError`.

## What this package does not do

- It has no HTTP API, web server or command-line program. The services
  are functions and classes to be called from your own application.
  `require_answered_questions` and `get_current_user` take decoded token
  claims; they do not parse or verify tokens.
- It does not call any sensitive-content review service and does not
  fetch images. Content review is whatever checker callable you pass in.
- It has no full-text search index and no search over floors.
- It keeps no reports, punishments or bans beyond what `User` reads and
  saves (`ban_division`, `ban_report` and the ban messages).
- Storage is SQLite only, and the cache lives in process memory.