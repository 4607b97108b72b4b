"""
OTP delivery orchestration.

Authentication, channel dispatch, line-type eligibility, SMS and voice
delivery, and the response envelopes returned to the identity provider.
"""
