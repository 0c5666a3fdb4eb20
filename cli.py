"""
Task Manager 命令列介面

用法:
    python cli.py login alice
    python cli.py add "Buy milk" --description "2 bottles"
    python cli.py list --filter PENDING
    python cli.py done 3
"""

from getpass import getpass
from client import (TaskManagerClient, Session, FileStorage, ApiError,
                    filter_tasks, task_stats, TASK_FILTERS, DEFAULT_API_URL)
import argparse
import httpx
import os
import sys

DEFAULT_SESSION_FILE = os.path.join(os.path.expanduser('~'), '.task_manager', 'session.json')

# ============================================
# 輸出格式
# ============================================

def render_task(task):
    mark = 'x' if task['status'] == 'COMPLETED' else ' '
    lines = [f"[{mark}] #{task['id']}  {task['title']}"]
    if task.get('description'):
        lines.append(f"      {task['description']}")
    return '\n'.join(lines)


def render_tasks(tasks, task_filter='all'):
    visible = filter_tasks(tasks, task_filter)
    stats = task_stats(tasks)

    lines = [render_task(task) for task in visible]
    if not visible:
        lines.append('No tasks yet.' if not tasks else 'No tasks match this filter.')
    lines.append(f"{stats['total']} tasks, {stats['pending']} pending, {stats['completed']} completed")
    return '\n'.join(lines)

# ============================================
# 指令
# ============================================

def cmd_register(client, args):
    password = args.password or getpass('Password: ')
    user = client.register(args.username, password)
    print(f"Registered and logged in as {user['username']}")


def cmd_login(client, args):
    password = args.password or getpass('Password: ')
    user = client.login(args.username, password)
    print(f"Logged in as {user['username']}")


def cmd_logout(client, args):
    client.logout()
    print('Logged out')


def cmd_whoami(client, args):
    if not client.session.is_authenticated:
        print('Not logged in')
        return 1
    print(client.session.user['username'])


def cmd_list(client, args):
    print(render_tasks(client.list_tasks(), args.filter))


def cmd_add(client, args):
    task = client.create_task(args.title, description=args.description, status=args.status)
    print(f"Created {render_task(task)}")


def cmd_edit(client, args):
    fields = {}
    if args.title is not None:
        fields['title'] = args.title
    if args.clear_description:
        fields['description'] = None
    elif args.description is not None:
        fields['description'] = args.description
    if args.status is not None:
        fields['status'] = args.status

    task = client.update_task(args.id, **fields)
    print(f"Updated {render_task(task)}")


def cmd_done(client, args):
    task = client.update_task(args.id, status='COMPLETED')
    print(f"Updated {render_task(task)}")


def cmd_undo(client, args):
    task = client.update_task(args.id, status='PENDING')
    print(f"Updated {render_task(task)}")


def cmd_rm(client, args):
    print(client.delete_task(args.id))


def build_parser():
    parser = argparse.ArgumentParser(prog='task-manager', description='Manage your personal task list')
    parser.add_argument('--api-url', default=os.getenv('TASK_MANAGER_API_URL', DEFAULT_API_URL))
    parser.add_argument('--session-file',
                        default=os.getenv('TASK_MANAGER_SESSION_FILE', DEFAULT_SESSION_FILE))
    subparsers = parser.add_subparsers(dest='command', required=True)

    for name, handler in (('register', cmd_register), ('login', cmd_login)):
        sub = subparsers.add_parser(name)
        sub.add_argument('username')
        sub.add_argument('--password')
        sub.set_defaults(handler=handler)

    subparsers.add_parser('logout').set_defaults(handler=cmd_logout)
    subparsers.add_parser('whoami').set_defaults(handler=cmd_whoami)

    sub = subparsers.add_parser('list')
    sub.add_argument('--filter', choices=TASK_FILTERS, default='all')
    sub.set_defaults(handler=cmd_list)

    sub = subparsers.add_parser('add')
    sub.add_argument('title')
    sub.add_argument('--description')
    sub.add_argument('--status', choices=('PENDING', 'COMPLETED'))
    sub.set_defaults(handler=cmd_add)

    sub = subparsers.add_parser('edit')
    sub.add_argument('id')
    sub.add_argument('--title')
    sub.add_argument('--description')
    sub.add_argument('--clear-description', action='store_true')
    sub.add_argument('--status', choices=('PENDING', 'COMPLETED'))
    sub.set_defaults(handler=cmd_edit)

    for name, handler in (('done', cmd_done), ('undo', cmd_undo), ('rm', cmd_rm)):
        sub = subparsers.add_parser(name)
        sub.add_argument('id')
        sub.set_defaults(handler=handler)

    return parser


def main(argv=None, client=None):
    args = build_parser().parse_args(argv)

    owns_client = client is None
    if owns_client:
        session = Session(FileStorage(args.session_file))
        client = TaskManagerClient(args.api_url, session=session)

    try:
        return args.handler(client, args) or 0
    except ApiError as e:
        if client.session_expired:
            print('Session expired, please log in again', file=sys.stderr)
        else:
            print(f'Error: {e.message}', file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Error: cannot reach {args.api_url} ({e})", file=sys.stderr)
        return 1
    finally:
        if owns_client:
            client.close()


if __name__ == '__main__':
    sys.exit(main())
