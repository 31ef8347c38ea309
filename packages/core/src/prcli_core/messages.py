"""User-visible comment templates.

Templates use ``str.format`` fields. Helpers at the bottom build the markdown
tables embedded in status comments.
"""

from __future__ import annotations

from typing import Iterable

from prcli_core.models import CheckRun

LGTM_MARKER = "<!-- prcli-lgtm: {login} -->"
LGTM_REMOVED_MARKER = "<!-- prcli-lgtm-removed: {login} -->"

# ---------------------------------------------------------------------------
# LGTM
# ---------------------------------------------------------------------------

LGTM_APPROVAL = """✅ **LGTM from @{login}** (Permission: `{permission}`)

{marker}"""

LGTM_ALREADY_APPROVED = """ℹ️ @{login} has already approved this PR. Nothing to do."""

LGTM_PERMISSION_DENIED = """❌ **LGTM Permission Denied**

@{login}, you don't have sufficient permissions to approve this PR.

**Your permission:** `{permission}`
**Required permissions:** {required}

Only users with the required permissions can use the /lgtm command."""

LGTM_SELF_APPROVAL = """ℹ️ **Self-approval not allowed**

@{login}, as the PR author, you cannot approve your own PR."""

LGTM_STATUS_READY = """✅ **LGTM Status - Ready to Merge**

This PR has {count}/{threshold} approvals and meets the approval threshold.

**LGTM Summary:**
{users}

The PR is now ready for merge! 🎉"""

LGTM_STATUS_PENDING = """⏳ **LGTM Status**

This PR has {count}/{threshold} approvals, {needed} needed to meet the threshold.

**Current LGTM Votes:**
{users}

**Required permissions:** {required}"""

LGTM_STATUS_TIP = """

> **Tip:** Use `/lgtm` to approve this PR if you have the required permissions."""

CHECKS_FAILED_HEADER = """

⚠️ **Check Runs Status - Some checks are not passing**
"""

CHECKS_FAILED_FOOTER = """

> **Note:** All checks must pass before this PR can be merged."""

CHECKS_PASSED = """

✅ **Check Runs Status - All checks are passing**"""

REMOVE_LGTM_PERMISSION_DENIED = """❌ **Remove LGTM Permission Denied**

@{login}, you don't have sufficient permissions to dismiss approvals on this PR.

**Your permission:** `{permission}`
**Required permissions:** {required}"""

REMOVE_LGTM_DISMISS = "❌ **LGTM Removed** by @{login}"

REMOVE_LGTM_NO_APPROVAL = """ℹ️ **No Approval to Remove**

@{login}, you don't have any active approval review to dismiss on this PR.

Use `/lgtm` first to approve the PR before you can remove your approval."""

REMOVE_LGTM_STATUS = """✅ **Approval Dismissed Successfully**

@{login} has dismissed their approval review.

**Updated LGTM Status:** {count}/{threshold} approvals, {needed} needed.

{marker}"""

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

COMMAND_ERROR = """❌ **Command Failed**

Command: `{command}`
Error: {error}

Please check the command usage or run `/help`."""

PR_NOT_OPEN = "❌ Command `{command}` requires an open PR (current state: `{state}`)."

# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

MERGE_INSUFFICIENT_PERMISSIONS = """❌ **Insufficient Permissions**

@{login}, you don't have the required permissions to {action}.

**Your permission:** {permission}
**Required permissions:** {required}
**PR creator:** @{author}

You need either:
- Required repository permissions ({required}), OR
- Be the creator of this PR"""

MERGE_CHECKS_NOT_PASSING = """⚠️ **Cannot merge PR: Some checks are not passing**
{checks}

Please wait for all checks to pass before merging."""

MERGE_NOT_ENOUGH_LGTM = """❌ **Cannot merge: Not enough LGTM approvals**

This PR has {count}/{threshold} approvals, {needed} needed.

Please ensure the PR has sufficient approvals before merging."""

MERGE_METHOD_UNAVAILABLE = """❌ **Cannot merge: merge method not available**

{reason}

Available methods: {available}"""

MERGE_FAILED = """❌ **Merge failed**

Failed to merge PR #{number}: {error}

Please check the PR status and try again."""

MERGE_SUCCESS = """🎉 **PR Successfully Merged!**

**Merge details:**
- **Method:** {method}
- **Merged by:** @{login}
- **LGTM votes:** {count}/{threshold}

**Approvers:**
{approvers}

Thank you to all reviewers! 🙏"""

# ---------------------------------------------------------------------------
# Assign / label / close / rebase
# ---------------------------------------------------------------------------

ASSIGNMENT_GREETING = """👋 Hello {mentions}

@{login} has requested your review on this pull request. Please take a look when you have a moment. Thanks! 🙏"""

UNASSIGNMENT = "♻️ Removed {mentions} from the review list. Thanks for your time!"

LABELS_ADDED = "🏷️ Labels `{labels}` have been added to this PR by @{login}"

LABELS_REMOVED = "🏷️ Labels `{labels}` have been removed from this PR by @{login}"

CLOSE_ALREADY_CLOSED = "ℹ️ PR #{number} is already closed."

CLOSE_SUCCESS = "🔒 PR #{number} has been closed by @{login}."

REBASE_FAILED = "❌ **Rebase failed**: {error}"

REBASE_SUCCESS = "✅ **PR rebased successfully** on the base branch."

# ---------------------------------------------------------------------------
# Cherry-pick
# ---------------------------------------------------------------------------

CHERRY_PICK_INVALID_COMMAND = """❌ **Invalid cherry-pick command**

Usage: `/cherry-pick <target-branch>`

Example: `/cherry-pick release-1.2`"""

CHERRY_PICK_UNKNOWN_STATE = """❌ **Cannot cherry-pick PR**

PR #{number} has an unknown state. Cherry-pick can be performed on:
- **Merged PRs** (cherry-pick is created immediately)
- **Open PRs** (cherry-pick is scheduled for when the PR merges)
- **Closed PRs** (cherry-pick the last commit)

Current PR state: {state}"""

CHERRY_PICK_SCHEDULED = "🍒 Cherry-pick to `{branch}` scheduled: will cherry-pick upon merge."

CHERRY_PICK_ERROR = """❌ **Cherry Pick Failed**

Failed to cherry-pick changes from PR #{number} to branch `{branch}`:
* Requested by: @{login}
* Error: `{error}`

*Possible causes:*
* Merge conflicts with the target branch
* Commits not available in the target repository (fork PRs)
* Branch protection rules on the target branch
* The target branch does not exist"""

CHERRY_PICK_SUCCESS = """✅ **Cherry Pick Successful**

Successfully cherry-picked changes from PR #{number} to branch `{branch}`.

*Details:*
* Source PR: #{number}
* Cherry-pick PR: #{new_number}
* Target Branch: `{branch}`
* Cherry-picked by: @{login}
* Commit SHA: `{sha}`"""

CHERRY_PICK_PR_TITLE = "cherry-pick: {title} → {branch}"

CHERRY_PICK_PR_BODY = """Cherry-pick of PR #{number} to {branch}

Original PR: #{number}
Requested by: @{login}"""

# ---------------------------------------------------------------------------
# Multi-command, batch, check, retest
# ---------------------------------------------------------------------------

MULTI_HEADER = "**Multi-Command Execution Results:**"
BATCH_HEADER = "**Batch Execution Results:**"
CHECK_HEADER = "**Check Command Results:**"
SOME_FAILED_SUFFIX = " (⚠️ Some commands failed)"

ROW_SUCCESS = "- {display} ✅"
ROW_FAILURE = "- {display} ❌ {error}"

NOT_ALLOWED_IN_BATCH = "command is not allowed in batch execution"

RETEST_ALL_PASSING = "✅ All checks are passing. No failed tests to rerun."
RETEST_NOTHING = "✅ No failed pipelines found that can be retested."
RETEST_SKIPPED = "\n\nSkipped checks (cannot extract pipeline name):\n• {names}"
RETEST_TRIGGERED = "🔄 **Retesting failed pipelines**\n\nTriggered retests for:\n• {names}"
RETEST_COMMENT = "/test {name}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def mention(user: str) -> str:
    return user if user.startswith("@") else "@" + user


def mentions(users: Iterable[str]) -> str:
    return ", ".join(mention(u) for u in users)


def users_table(approvers: Iterable[tuple[str, str]]) -> str:
    rows = ["| User | Permission | Valid |", "|------|------------|-------|"]
    for login, permission in approvers:
        rows.append(f"| @{login} | `{permission}` | ✅ |")
    return "\n".join(rows)


def check_table(checks: Iterable[CheckRun]) -> str:
    rows = ["| Check Name | Status |", "|------------|--------|"]
    for check in checks:
        state = check.conclusion if check.is_completed else check.status
        name = f"[{check.name}]({check.url})" if check.url else check.name
        rows.append(f"| {name} | `{state}` |")
    return "\n".join(rows)


def help_message(threshold: int, permissions: Iterable[str], merge_method: str) -> str:
    return f"""## 🤖 PR CLI Commands

| Command | Usage | Description |
|---------|-------|-------------|
| **assign** | `/assign @user ...` | Request reviews from users |
| **unassign** | `/unassign @user ...` | Remove requested reviewers |
| **lgtm** | `/lgtm` | Approve the PR (requires permissions) |
| **remove-lgtm** | `/remove-lgtm` or `/lgtm cancel` | Dismiss your approval |
| **check** | `/check [/cmd args ...]` | Show LGTM and check status, or run commands like `/batch` |
| **batch** | `/batch /cmd args ...` | Run several commands and summarize the results |
| **merge** | `/merge [auto\\|merge\\|squash\\|rebase]` | Merge after permission, check and LGTM gates |
| **ready** | `/ready [method]` | Alias for merge |
| **rebase** | `/rebase` | Update the PR branch from its base |
| **cherry-pick** | `/cherry-pick <branch>` | Cherry-pick now (merged/closed PR) or upon merge (open PR) |
| **label** | `/label name ...` | Add labels |
| **unlabel** | `/unlabel name ...` | Remove labels |
| **retest** | `/retest [pipeline ...]` | Re-run failed checks |
| **close** | `/close` | Close the PR |
| **help** | `/help` | Show this message |

Several commands can be given at once, one per line.
`/lgtm` and `/remove-lgtm` are not allowed inside `/batch`.

> With `auto`, the merge method is the first available of `rebase` > `squash` > `merge`.

### ⚙️ Configuration
- **LGTM Threshold:** {threshold} approval(s) required
- **Required Permissions:** {", ".join(permissions)}
- **Default Merge Method:** {merge_method}"""
