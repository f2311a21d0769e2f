# emails.py — Notification templates
"""Subject and HTML body for every notification the API enqueues.

All interpolated values pass through html.escape.
"""
from dataclasses import dataclass
from html import escape
from typing import Optional

from auth import OTP_EXPIRE_MINUTES

APP_NAME = "WorkHub"


@dataclass
class MailContent:
    subject: str
    html: str


def _e(value) -> str:
    if value is None:
        return ""
    return escape(str(getattr(value, "value", value)))


def _layout(heading: str, *paragraphs: str) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: auto;\">"
        f"<h2 style=\"color: #1f2937;\">{escape(heading)}</h2>"
        f"{body}"
        f"<p style=\"color: #6b7280; font-size: 12px;\">{APP_NAME}</p>"
        "</div>"
    )


def _code(otp: str) -> str:
    return f"<strong style=\"font-size: 20px; letter-spacing: 4px;\">{_e(otp)}</strong>"


# --- Accounts ---

def welcome_user(name: str, email: str, password: str, otp: str) -> MailContent:
    return MailContent(
        subject=f"Welcome to {APP_NAME}",
        html=_layout(
            f"Welcome, {name}",
            f"An account has been created for <strong>{_e(email)}</strong>.",
            f"Your temporary password is <strong>{_e(password)}</strong>. Please change it after signing in.",
            f"Verify your email with this code: {_code(otp)}",
            f"The code expires in {OTP_EXPIRE_MINUTES} minutes.",
        ),
    )


def verification_code(name: str, otp: str) -> MailContent:
    return MailContent(
        subject="Verify your email address",
        html=_layout(
            f"Hello {name}",
            f"Your verification code is {_code(otp)}",
            f"The code expires in {OTP_EXPIRE_MINUTES} minutes.",
        ),
    )


def password_reset_code(name: str, otp: str) -> MailContent:
    return MailContent(
        subject="Password reset code",
        html=_layout(
            f"Hello {name}",
            f"Use this code to reset your password: {_code(otp)}",
            f"The code expires in {OTP_EXPIRE_MINUTES} minutes. If you did not ask for a reset, ignore this email.",
        ),
    )


def role_changed(name: str, role: str) -> MailContent:
    return MailContent(
        subject="Your role has been updated",
        html=_layout(f"Hello {name}", f"Your role is now <strong>{_e(role)}</strong>."),
    )


# --- Clients ---

def client_registration_received(client_name: str, email: str) -> MailContent:
    return MailContent(
        subject="New client registration awaiting approval",
        html=_layout(
            "Client registration",
            f"{_e(client_name)} ({_e(email)}) submitted registration documents for review.",
        ),
    )


def client_approval_decision(name: str, status: str, reason: Optional[str] = None) -> MailContent:
    paragraphs = [f"Your registration has been <strong>{_e(status)}</strong>."]
    if reason:
        paragraphs.append(f"Reason: {_e(reason)}")
    return MailContent(
        subject=f"Your registration has been {_e(status)}",
        html=_layout(f"Hello {name}", *paragraphs),
    )


# --- Teams & projects ---

def team_assignment(name: str, team_name: str) -> MailContent:
    return MailContent(
        subject=f"You have been added to team {team_name}",
        html=_layout(f"Hello {name}", f"You are now a member of <strong>{_e(team_name)}</strong>."),
    )


def project_team_assigned(name: str, project_name: str, team_name: str) -> MailContent:
    return MailContent(
        subject=f"Your team has been assigned to {project_name}",
        html=_layout(
            f"Hello {name}",
            f"Team <strong>{_e(team_name)}</strong> is now working on <strong>{_e(project_name)}</strong>.",
        ),
    )


def project_status_changed(project_name: str, previous: str, status: str, changed_by: str) -> MailContent:
    return MailContent(
        subject=f"Project {project_name} is now {status}",
        html=_layout(
            "Project status update",
            f"<strong>{_e(project_name)}</strong> moved from {_e(previous)} to <strong>{_e(status)}</strong>.",
            f"Changed by {_e(changed_by)}.",
        ),
    )


def project_completed(client_name: str, project_name: str) -> MailContent:
    return MailContent(
        subject=f"Project {project_name} has been completed",
        html=_layout(
            f"Hello {client_name}",
            f"We are pleased to let you know that <strong>{_e(project_name)}</strong> is complete.",
        ),
    )


def project_client_added(client_name: str, project_name: str) -> MailContent:
    return MailContent(
        subject=f"You have been added to project {project_name}",
        html=_layout(f"Hello {client_name}", f"You can now follow <strong>{_e(project_name)}</strong>."),
    )


def project_deleted(project_name: str) -> MailContent:
    return MailContent(
        subject=f"Project {project_name} has been deleted",
        html=_layout("Project removed", f"<strong>{_e(project_name)}</strong> has been deleted."),
    )


# --- Tasks ---

def task_assigned(title: str, project_name: str, due_date=None) -> MailContent:
    paragraphs = [f"Task <strong>{_e(title)}</strong> on {_e(project_name)} has been created."]
    if due_date:
        paragraphs.append(f"Due {_e(due_date)}.")
    return MailContent(subject=f"New task: {title}", html=_layout("New task", *paragraphs))


def task_status_changed(title: str, previous: str, status: str) -> MailContent:
    return MailContent(
        subject=f"Task {title} is now {status}",
        html=_layout("Task update", f"<strong>{_e(title)}</strong> moved from {_e(previous)} to {_e(status)}."),
    )


# --- Leave ---

def leave_requested(requester: str, start_date, end_date, reason: str) -> MailContent:
    return MailContent(
        subject=f"New leave request from {requester}",
        html=_layout(
            "Leave request",
            f"{_e(requester)} requested leave from {_e(start_date)} to {_e(end_date)}.",
            f"Reason: {_e(reason)}",
        ),
    )


def leave_updated(requester: str, start_date, end_date, reason: str) -> MailContent:
    return MailContent(
        subject=f"Leave request updated by {requester}",
        html=_layout(
            "Leave request updated",
            f"{_e(requester)} changed their leave request to {_e(start_date)} to {_e(end_date)}.",
            f"Reason: {_e(reason)}",
        ),
    )


def leave_decided(name: str, status: str, start_date, end_date) -> MailContent:
    return MailContent(
        subject=f"Your Leave Request has been {status.upper()}",
        html=_layout(
            f"Hello {name}",
            f"Your leave from {_e(start_date)} to {_e(end_date)} has been <strong>{_e(status)}</strong>.",
        ),
    )


def leave_deleted(name: str, start_date, end_date) -> MailContent:
    return MailContent(
        subject="Your Leave Request has been deleted",
        html=_layout(f"Hello {name}", f"Your leave request from {_e(start_date)} to {_e(end_date)} was removed."),
    )


# --- Proposals ---

def proposal_submitted(proposal_code: str, title: str, author: str) -> MailContent:
    return MailContent(
        subject=f"Proposal {proposal_code} submitted for approval",
        html=_layout("Proposal submitted", f"{_e(author)} submitted <strong>{_e(title)}</strong> ({_e(proposal_code)})."),
    )


def proposal_decided(name: str, proposal_code: str, title: str, status: str) -> MailContent:
    return MailContent(
        subject=f"Proposal {proposal_code} marked {status}",
        html=_layout(f"Hello {name}", f"Your proposal <strong>{_e(title)}</strong> is now {_e(status)}."),
    )


# --- HSE ---

def hse_report_filed(title: str, reporter: str, date_of_report) -> MailContent:
    return MailContent(
        subject=f"New HSE report: {title}",
        html=_layout("HSE incident report", f"{_e(reporter)} filed <strong>{_e(title)}</strong> for {_e(date_of_report)}."),
    )


def hse_status_changed(name: str, title: str, status: str) -> MailContent:
    return MailContent(
        subject=f"HSE report {title} is now {status}",
        html=_layout(f"Hello {name}", f"Your report <strong>{_e(title)}</strong> is now {_e(status)}."),
    )


# --- Finance ---

def expense_submitted(request_code: str, vendor: str, amount, submitter: str) -> MailContent:
    return MailContent(
        subject=f"Expense request {request_code} awaiting approval",
        html=_layout("Expense request", f"{_e(submitter)} requested {_e(amount)} for {_e(vendor)} ({_e(request_code)})."),
    )


def expense_decided(name: str, request_code: str, status: str, reason: Optional[str] = None) -> MailContent:
    paragraphs = [f"Your expense request {_e(request_code)} has been <strong>{_e(status)}</strong>."]
    if reason:
        paragraphs.append(f"Reason: {_e(reason)}")
    return MailContent(subject=f"Expense request {request_code} {status}", html=_layout(f"Hello {name}", *paragraphs))


# --- Project documents & reports ---

def documents_uploaded(project_name: str, names, uploader: str) -> MailContent:
    listing = "".join(f"<li>{_e(n)}</li>" for n in names)
    return MailContent(
        subject=f"New documents on {project_name}",
        html=_layout("Project documents", f"{_e(uploader)} uploaded to <strong>{_e(project_name)}</strong>:",
                     f"<ul>{listing}</ul>"),
    )


def document_status_changed(name: str, document_name: str, status: str) -> MailContent:
    return MailContent(
        subject=f"Document {document_name} marked {status}",
        html=_layout(f"Hello {name}", f"Your document <strong>{_e(document_name)}</strong> is now {_e(status)}."),
    )


def report_created(title: str, project_name: str, author: str) -> MailContent:
    return MailContent(
        subject=f"New report: {title}",
        html=_layout("Project report", f"{_e(author)} wrote <strong>{_e(title)}</strong> for {_e(project_name)}."),
    )


def report_updated(title: str, editor: str) -> MailContent:
    return MailContent(
        subject=f"Report updated: {title}",
        html=_layout("Project report", f"{_e(editor)} updated <strong>{_e(title)}</strong>."),
    )


def report_deleted(title: str, deleted_by: str) -> MailContent:
    return MailContent(
        subject=f"Report deleted: {title}",
        html=_layout("Project report", f"<strong>{_e(title)}</strong> was deleted by {_e(deleted_by)}."),
    )


def report_assigned(name: str, title: str, project_name: str) -> MailContent:
    return MailContent(
        subject=f"Report assigned: {title}",
        html=_layout("Project report", f"<strong>{_e(title)}</strong> on {_e(project_name)} is now assigned to {_e(name)}."),
    )


# --- Weekly summaries ---

def weekly_summary(name: str, week_start, week_end, hours, completed: int, overdue: int) -> MailContent:
    return MailContent(
        subject="Your Weekly Work Summary",
        html=_layout(
            f"Hello {name}",
            f"Here is your summary for {_e(week_start)} to {_e(week_end)}.",
            f"Hours logged: <strong>{_e(hours)}</strong>",
            f"Tasks completed: <strong>{_e(completed)}</strong>",
            f"Overdue tasks: <strong>{_e(overdue)}</strong>",
        ),
    )


def weekly_team_summary(week_start, week_end, rows) -> MailContent:
    """rows: (name, email, tasks completed, hours) per staff member"""
    cells = "".join(
        f"<tr><td>{_e(name)}</td><td>{_e(email)}</td><td>{_e(completed)}</td><td>{_e(hours)}</td></tr>"
        for name, email, completed, hours in rows
    )
    table = (
        "<table style=\"border-collapse: collapse; width: 100%;\">"
        "<tr><th>Name</th><th>Email</th><th>Tasks completed</th><th>Hours</th></tr>"
        f"{cells}</table>"
    )
    return MailContent(
        subject="Weekly WorkLog Summary",
        html=_layout("Weekly WorkLog Summary", f"Week of {_e(week_start)} to {_e(week_end)}.", table),
    )
