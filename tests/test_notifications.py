import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from treehole.db import Database, MessageType
from treehole.notifications import (
    AdminList,
    Notification,
    Notifier,
    clean_notification_description,
    merge_notifications,
)
from treehole.users import load_user
from treehole.utils import InternalServerError


@pytest.fixture
def db():
    database = Database(":memory:")
    load_user(database, 1)
    load_user(database, 2)
    yield database
    database.close()


def _recipients_of(db, message_id):
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT user_id FROM message_user WHERE message_id = ? ORDER BY user_id",
            (message_id,),
        ).fetchall()
    return [row[0] for row in rows]


@pytest.fixture
def server():
    received = []
    state = {"status": 201}

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers["Content-Length"])
            received.append((self.path, json.loads(self.rfile.read(length))))
            body = b'{"message": "ok"}'
            self.send_response(state["status"])
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}", received, state
    httpd.shutdown()
    httpd.server_close()


def test_merge_skips_empty_recipients():
    base = [Notification("a", "b", MessageType.REPLY, recipients=[1])]
    merged = merge_notifications(base, Notification("c", "d", MessageType.MENTION))
    assert len(merged) == 1


def test_merge_removes_already_notified():
    base = [Notification("a", "b", MessageType.REPLY, recipients=[1, 2])]
    new = Notification("c", "d", MessageType.MENTION, recipients=[2, 3])
    merged = merge_notifications(base, new)
    assert [n.recipients for n in merged] == [[1, 2], [3]]
    assert new.recipients == [2, 3]


def test_merge_drops_fully_covered():
    base = [Notification("a", "b", MessageType.REPLY, recipients=[1, 2])]
    merged = merge_notifications(base, Notification("c", "d", MessageType.FAVORITE, recipients=[2, 1]))
    assert len(merged) == 1


def test_clean_description_replacements():
    assert clean_notification_description("see $x^2$ here") == "see [公式] here"
    assert clean_notification_description("![](dx_smile)") == "[表情]"
    assert clean_notification_description("![pic](a.png)") == "[图片]"
    assert clean_notification_description("a\nb ##12") == "ab "


def test_clean_description_keeps_original_when_empty():
    assert clean_notification_description("#12") == "#12"


def test_admin_list_reload_keeps_members():
    admins = AdminList([3, 1, 2])
    assert sorted(admins.ids) == [1, 2, 3]
    admins.reload([9])
    assert admins.ids == [9]
    assert len(admins) == 1


def test_notification_to_dict_uses_wire_keys():
    data = Notification("t", "d", MessageType.REPLY, url="/api/floors/1", recipients=[1]).to_dict()
    assert data["code"] == "reply"
    assert data["message"] == "t"
    assert data["recipients"] == [1]


def test_send_stores_for_existing_users(db):
    notifier = Notifier(db)
    message = notifier.send(Notification("t", "d", MessageType.REPLY, recipients=[1, 2, 3]))
    assert message.id > 0
    assert _recipients_of(db, message.id) == [1, 2]


def test_send_respects_opt_out(db):
    with db.transaction() as conn:
        conn.execute(
            'UPDATE "user" SET config = ? WHERE id = 2',
            (json.dumps({"notify": [], "show_folded": "hide"}),),
        )
    notifier = Notifier(db)
    message = notifier.send(Notification("t", "d", MessageType.MENTION, recipients=[1, 2]))
    assert _recipients_of(db, message.id) == [1]


def test_send_without_recipients_stores_nothing(db):
    assert Notifier(db).send(Notification("t", "d", MessageType.REPLY, recipients=[42])) is None
    with db.transaction() as conn:
        assert conn.execute("SELECT COUNT(*) FROM message").fetchone()[0] == 0


def test_send_pushes_to_service(db, server):
    url, received, _ = server
    notifier = Notifier(db, notification_url=url)
    title = "标" * 40
    message = notifier.send(
        Notification(title, "hello #3\nworld", MessageType.REPLY, recipients=[2, 1])
    )
    path, body = received[0]
    assert path == "/messages"
    assert body["recipients"] == [1, 2]
    assert body["message"] == title[:32]
    assert body["description"] == "hello world"
    assert message.title == title[:32]


def test_send_raises_when_service_refuses(db, server):
    url, _, state = server
    state["status"] = 500
    with pytest.raises(InternalServerError):
        Notifier(db, notification_url=url).send(
            Notification("t", "d", MessageType.REPLY, recipients=[1])
        )


def test_bench_mode_does_not_push(db):
    notifier = Notifier(db, notification_url="http://127.0.0.1:9", mode="bench")
    message = notifier.send(Notification("t", "d", MessageType.REPLY, recipients=[1]))
    assert _recipients_of(db, message.id) == [1]


def test_send_all_sends_each(db):
    Notifier(db).send_all(
        [
            Notification("a", "d", MessageType.REPLY, recipients=[1]),
            Notification("b", "d", MessageType.REPLY, recipients=[2]),
        ]
    )
    with db.transaction() as conn:
        titles = [row[0] for row in conn.execute("SELECT title FROM message ORDER BY id")]
    assert titles == ["a", "b"]