"""FaceTime Attendance: face enrolment and WebAuthn second-factor service."""
